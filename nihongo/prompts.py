"""Prompts used for AI operations in the nihongo package."""

from typing import Dict, List, Tuple

AUTO_DETECT = "auto"

# (code, display name) pairs offered as translation sources
SUPPORTED_LANGUAGES: List[Tuple[str, str]] = [
    (AUTO_DETECT, "Auto Detect"),
    ("en", "English"),
    ("es", "Spanish"),
    ("fr", "French"),
    ("de", "German"),
    ("it", "Italian"),
    ("pt", "Portuguese"),
    ("ru", "Russian"),
    ("zh", "Chinese"),
    ("ko", "Korean"),
    ("vi", "Vietnamese"),
    ("th", "Thai"),
    ("id", "Indonesian"),
    ("ar", "Arabic"),
    ("hi", "Hindi"),
]

TONE_DESCRIPTIONS: Dict[str, str] = {
    'Casual': 'Informal speech. Best used with close friends, family, and younger people.',
    'Polite': 'Standard politeness (Desu/Masu forms). Safe for general daily interactions and strangers.',
    'Formal/Keigo': 'Highly respectful language including honorifics. Essential for business, customer service, and speaking to superiors.',
}

SYSTEM_INSTRUCTION = (
    "You are a Japanese language teacher. You explain Japanese accurately and "
    "concisely for learners, including register and cultural context."
)

NOT_FOUND_MARKER = "NOT_FOUND"


def language_name(code: str) -> str:
    """Human readable name for a source-language code; unknown codes pass through."""
    for lang_code, name in SUPPORTED_LANGUAGES:
        if lang_code == code:
            return name
    return code


def get_translate_prompt(text: str, source_language: str) -> str:
    if source_language == AUTO_DETECT:
        source = "the detected source language"
    else:
        source = language_name(source_language)
    return f"""
        Translate to Japanese: "{text}" from {source}.

        # Task
        Return JSON with:
        - japanese: the natural Japanese translation
        - romaji: Hepburn romanization of the translation
        - pronunciation: a simple phonetic guide for English speakers
        - englishMeaning: the meaning of the Japanese in English
        - tone: exactly one of Casual, Polite, Formal/Keigo
        - culturalNote: a short note on usage or etiquette, if relevant
        - breakdown: every word or phrase of the translation in order, each with
          word, romaji, meaning, partOfSpeech and, when useful, an exampleSentence
          written as "<Japanese sentence> (<English translation>)"

        # Constraints
        - Only return the JSON output. Do not include any explanations or markdown.
    """


def get_dictionary_prompt(query: str) -> str:
    return f"""
        Dictionary entry for: "{query}". The query may be Japanese (kanji or kana),
        romaji or an English word; answer with the best matching Japanese word.

        # Task
        Return JSON with word, reading (kana), romaji, meanings (list), partOfSpeech,
        jlptLevel (N5-N1 if known), kanjiBreakdown (character, onyomi, kunyomi, meaning
        for every kanji in the word), usageNotes and exampleSentences (ja, en).

        # Constraints
        - If no Japanese word corresponds to the query, return word "{NOT_FOUND_MARKER}"
          with an empty meanings list.
        - Only return the JSON output. Do not include any explanations or markdown.
    """


TRANSCRIBE_PROMPT = "Transcribe audio."


def get_pronunciation_prompt(reference_text: str) -> str:
    return f"""
        Evaluate Japanese: "{reference_text}".

        The audio is a learner trying to say the reference phrase above.
        Return JSON with:
        - score: integer from 0 to 100 for how close the pronunciation is
        - transcript: what you actually heard, in Japanese
        - feedback: one or two sentences of concrete advice in English
    """


def get_example_sentence_prompt(word: str, meaning: str) -> str:
    return (
        f'Write one short, simple Japanese example sentence using "{word}" '
        f'(meaning: {meaning}). Reply with only the sentence followed by its '
        f'English translation in parentheses, like: 猫が好きです (I like cats)'
    )
