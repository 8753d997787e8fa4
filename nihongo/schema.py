import re
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, TypeAdapter

# Parenthetical translation trailing an example sentence, full- or half-width
_PAREN_RE = re.compile(r"[（(].*?[）)]")


class Tone(str, Enum):
    CASUAL = "Casual"
    POLITE = "Polite"
    FORMAL = "Formal/Keigo"


class WordBreakdown(BaseModel):
    word: str = Field(..., min_length=1)
    romaji: str
    meaning: str
    partOfSpeech: str
    exampleSentence: Optional[str] = None  # "<Japanese sentence> (<translation>)"

    def example_parts(self, sentence: Optional[str] = None) -> Tuple[str, str]:
        """Split an example sentence into its Japanese part and its translation."""
        text = (sentence if sentence is not None else self.exampleSentence) or ""
        japanese = _PAREN_RE.sub("", text).strip()
        match = _PAREN_RE.search(text)
        translation = match.group(0)[1:-1].strip() if match else ""
        return japanese, translation


class TranslationResult(BaseModel):
    japanese: str = Field(..., min_length=1)
    romaji: str = Field(..., min_length=1)
    pronunciation: str
    englishMeaning: str
    tone: Tone
    culturalNote: Optional[str] = None
    breakdown: List[WordBreakdown]


class KanjiDetail(BaseModel):
    character: str
    onyomi: str
    kunyomi: str
    meaning: str


class ExampleSentence(BaseModel):
    ja: str
    en: str


class DictionaryEntry(BaseModel):
    word: str
    reading: str
    romaji: str
    meanings: List[str]
    partOfSpeech: str
    jlptLevel: Optional[str] = None
    kanjiBreakdown: Optional[List[KanjiDetail]] = None
    usageNotes: Optional[str] = None
    exampleSentences: List[ExampleSentence]


class PronunciationResult(BaseModel):
    score: int
    transcript: str
    feedback: str


class HistoryItem(BaseModel):
    id: str = Field(..., min_length=1)
    originalText: str
    result: TranslationResult
    timestamp: int = Field(..., ge=0)  # milliseconds since the Unix epoch


HistoryItems = TypeAdapter(List[HistoryItem])


def dump_items(items: List[HistoryItem]) -> list:
    """JSON-ready form of a collection; unset optional fields are omitted."""
    return [item.model_dump(mode="json", exclude_none=True) for item in items]
