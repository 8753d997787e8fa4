"""Test configuration and fixtures."""
import pytest
from unittest.mock import AsyncMock, Mock, patch
import os
import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nihongo.ai import GeminiClient
from nihongo.app import NihongoApp
from nihongo.schema import TranslationResult
from nihongo.store import HistoryStore, MemoryKeyValueStore


class FakeCapture:
    """Stands in for an open microphone stream."""
    mime_type = "audio/wav"

    def __init__(self, audio: bytes):
        self.audio = audio
        self.stopped = False
        self.released = False

    def stop(self) -> bytes:
        self.stopped = True
        self.released = True
        return self.audio

    def release(self):
        self.released = True


class FakeMicrophone:
    def __init__(self, audio: bytes = b"RIFF-fake-wav"):
        self.audio = audio
        self.error = None
        self.handles = []

    def acquire(self):
        if self.error is not None:
            raise self.error
        handle = FakeCapture(self.audio)
        self.handles.append(handle)
        return handle


@pytest.fixture
def sample_translation():
    """Translation of "Good morning"."""
    return TranslationResult(
        japanese="おはようございます",
        romaji="ohayou gozaimasu",
        pronunciation="oh-hah-yoh goh-zai-mahs",
        englishMeaning="Good morning (polite)",
        tone="Polite",
        culturalNote="Used until roughly 10-11am.",
        breakdown=[
            {"word": "おはよう", "romaji": "ohayou", "meaning": "good morning", "partOfSpeech": "interjection",
             "exampleSentence": "おはよう、元気？ (Morning, how are you?)"},
            {"word": "ございます", "romaji": "gozaimasu", "meaning": "polite copula", "partOfSpeech": "auxiliary"},
        ],
    )


@pytest.fixture
def other_translation():
    """Translation of "Thank you"."""
    return TranslationResult(
        japanese="ありがとう",
        romaji="arigatou",
        pronunciation="ah-ree-gah-toh",
        englishMeaning="Thank you",
        tone="Casual",
        breakdown=[
            {"word": "ありがとう", "romaji": "arigatou", "meaning": "thanks", "partOfSpeech": "interjection"},
        ],
    )


def make_translation(japanese: str, tone: str = "Polite") -> TranslationResult:
    return TranslationResult(
        japanese=japanese,
        romaji=f"romaji-{japanese}",
        pronunciation="",
        englishMeaning=f"meaning of {japanese}",
        tone=tone,
        breakdown=[],
    )


@pytest.fixture
def translation_factory():
    return make_translation


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv):
    return HistoryStore(kv)


@pytest.fixture
def mock_genai_client():
    """Patched google.genai.Client whose async generate_content is an AsyncMock."""
    with patch.dict(os.environ, {'GEMINI_KEY': 'test-key'}):
        with patch('google.genai.Client') as mock_genai:
            mock_client = Mock()
            mock_client.aio.models.generate_content = AsyncMock()
            mock_genai.return_value = mock_client
            yield mock_client


@pytest.fixture
def gemini(mock_genai_client):
    return GeminiClient(api_key='test-key')


@pytest.fixture
def ai_client():
    """GeminiClient double for state machine tests."""
    client = Mock(spec=GeminiClient)
    client.translate = AsyncMock()
    client.lookup_dictionary = AsyncMock()
    client.transcribe = AsyncMock(return_value="")
    client.evaluate_pronunciation = AsyncMock()
    client.synthesize_speech = AsyncMock(return_value=None)
    client.fetch_example_sentence = AsyncMock()
    return client


@pytest.fixture
def microphone():
    return FakeMicrophone()


@pytest.fixture
def player():
    return Mock()


@pytest.fixture
def app(ai_client, store, microphone, player):
    return NihongoApp(ai_client, store, microphone=microphone, player=player)
