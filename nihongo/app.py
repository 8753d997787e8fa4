"""Application state machine.

Translation, dictionary lookup, dictation and pronunciation practice are
independent flows that share one AI client and one history store. Each flow
owns its own slice of state; a failure in one never touches another.
"""
import asyncio
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from nihongo.ai import GeminiClient
from nihongo.audio import Microphone, PlayableAudio, encode_to_transferable, play
from nihongo.errors import AIServiceError, MicrophoneDenied, MicrophoneUnavailable, NihongoError, NotFound, RateLimited, SynthesisRefused
from nihongo.logger import logger
from nihongo.prompts import AUTO_DETECT, TONE_DESCRIPTIONS
from nihongo.schema import DictionaryEntry, HistoryItem, PronunciationResult, TranslationResult, WordBreakdown
from nihongo.store import HistoryStore

TRANSLATE_QUOTA_MESSAGE = "API Quota Exceeded. Please wait a moment or use your own API key."
TRANSLATE_ERROR_MESSAGE = "Translation failed. Please try again."
DICTIONARY_QUOTA_MESSAGE = "Dictionary quota exceeded. Please try later."
DICTIONARY_NOT_FOUND_MESSAGE = "Word not found in dictionary."
DICTIONARY_ERROR_MESSAGE = "Dictionary lookup failed. Please try again."
TRANSCRIPTION_QUOTA_MESSAGE = "Transcription quota exceeded."
TRANSCRIPTION_ERROR_MESSAGE = "Transcription failed. Please try again."
PRACTICE_ERROR_MESSAGE = "Pronunciation check failed. Please try again."
MICROPHONE_DENIED_MESSAGE = "Microphone access denied."
MICROPHONE_UNAVAILABLE_MESSAGE = "No microphone available."
SPEECH_REFUSED_MESSAGE = "This text cannot be spoken."
SPEECH_ERROR_MESSAGE = "Audio playback failed."

MIN_PLAYBACK_SPEED = 0.5
MAX_PLAYBACK_SPEED = 1.5


class AppState(Enum):
    IDLE = "idle"
    TRANSLATING = "translating"
    SUCCESS = "success"
    ERROR = "error"


class DictionaryState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


class RecordingState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"


class PracticeState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    EVALUATING = "evaluating"


class ExampleBackfill:
    """Fetches missing example sentences, once per (word, meaning) per session."""

    def __init__(self, client: GeminiClient):
        self.client = client
        self._attempted = set()
        self._sentences: Dict[Tuple[str, str], str] = {}
        self._tasks = set()

    def sentence_for(self, item: WordBreakdown) -> Optional[str]:
        return item.exampleSentence or self._sentences.get((item.word, item.meaning))

    def request(self, item: WordBreakdown) -> Optional[asyncio.Task]:
        """Schedule a background fetch; must be called from a running event loop."""
        if item.exampleSentence:
            return None
        key = (item.word, item.meaning)
        if key in self._attempted:
            return None
        self._attempted.add(key)
        task = asyncio.get_running_loop().create_task(self._fetch(key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _fetch(self, key: Tuple[str, str]) -> None:
        word, meaning = key
        try:
            sentence = await self.client.fetch_example_sentence(word, meaning)
        except NihongoError as e:
            logger.warning(f"⚠️ No example sentence for {word}: {e}")
            return
        self._sentences[key] = sentence

    async def wait(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))


class NihongoApp:
    def __init__(self, client: GeminiClient, store: HistoryStore, microphone=None,
                 player: Optional[Callable[[PlayableAudio], None]] = None):
        self.client = client
        self.store = store
        self.microphone = microphone or Microphone()
        self.player = player or (lambda audio: play(audio, blocking=False))

        # translate flow
        self.input_text = ""
        self.source_language = AUTO_DETECT
        self.state = AppState.IDLE
        self.result: Optional[TranslationResult] = None
        self.result_text = ""
        self.error_message = ""
        self.quota_exceeded = False
        self._translate_seq = 0

        # dictionary flow
        self.dictionary_query = ""
        self.dictionary_state = DictionaryState.IDLE
        self.dictionary_entry: Optional[DictionaryEntry] = None
        self.dictionary_error = ""
        self._dictionary_seq = 0

        # dictation and practice
        self.recording_state = RecordingState.IDLE
        self.practice_state = PracticeState.IDLE
        self.practice_result: Optional[PronunciationResult] = None
        self.practice_error = ""
        self.notice = ""
        self._capture = None
        self._practice_capture = None
        self._practice_reference = ""

        self.examples = ExampleBackfill(client)

    # ── translate ────────────────────────────────────────────────────────────
    async def submit(self) -> bool:
        """Translate the current input. Returns True when a result was applied."""
        if self.state is AppState.TRANSLATING:
            logger.info("Translation already in flight, ignoring submit")
            return False
        text = self.input_text
        if not text.strip():
            return False
        self._translate_seq += 1
        seq = self._translate_seq
        self.state = AppState.TRANSLATING
        self.error_message = ""
        try:
            result = await self.client.translate(text, self.source_language)
        except AIServiceError as e:
            if seq != self._translate_seq:
                logger.info("Discarding failure of a superseded translation")
                return False
            self.state = AppState.ERROR
            self.error_message = self._quota_or(e, TRANSLATE_QUOTA_MESSAGE, TRANSLATE_ERROR_MESSAGE)
            return False
        if seq != self._translate_seq:
            logger.info("Discarding result of a superseded translation")
            return False
        self.result = result
        self.result_text = text
        self.state = AppState.SUCCESS
        self.quota_exceeded = False
        self.store.record_history(text, result)
        return True

    def _quota_or(self, error: AIServiceError, quota_message: str, fallback: str) -> str:
        if isinstance(error, RateLimited):
            self.quota_exceeded = True
            return quota_message
        return fallback

    def select_item(self, item: HistoryItem) -> None:
        """Show a history or saved entry; any translation in flight is superseded."""
        self._translate_seq += 1
        self.input_text = item.originalText
        self.result_text = item.originalText
        self.result = item.result
        self.error_message = ""
        self.state = AppState.SUCCESS

    @property
    def tone_description(self) -> str:
        if self.result is None:
            return ""
        return TONE_DESCRIPTIONS.get(self.result.tone.value, "")

    # ── saved items ──────────────────────────────────────────────────────────
    @property
    def is_saved(self) -> bool:
        return self.result is not None and self.store.is_saved(self.result)

    def toggle_save(self) -> bool:
        if self.result is None:
            raise ValueError("No translation to save")
        return self.store.toggle_saved(self.result_text, self.result)

    # ── dictionary ───────────────────────────────────────────────────────────
    async def lookup(self, query: Optional[str] = None) -> bool:
        q = (query or self.dictionary_query).strip()
        if not q:
            return False
        if self.dictionary_state is DictionaryState.LOADING:
            logger.info("Dictionary lookup already in flight, ignoring")
            return False
        self._dictionary_seq += 1
        seq = self._dictionary_seq
        self.dictionary_query = q
        self.dictionary_state = DictionaryState.LOADING
        self.dictionary_entry = None
        self.dictionary_error = ""
        try:
            entry = await self.client.lookup_dictionary(q)
        except AIServiceError as e:
            if seq != self._dictionary_seq:
                return False
            self.dictionary_state = DictionaryState.ERROR
            if isinstance(e, NotFound):
                self.dictionary_error = DICTIONARY_NOT_FOUND_MESSAGE
            else:
                self.dictionary_error = self._quota_or(e, DICTIONARY_QUOTA_MESSAGE, DICTIONARY_ERROR_MESSAGE)
            return False
        if seq != self._dictionary_seq:
            logger.info("Discarding result of a closed dictionary lookup")
            return False
        self.dictionary_entry = entry
        self.dictionary_state = DictionaryState.IDLE
        self.quota_exceeded = False
        return True

    def close_dictionary(self) -> None:
        self._dictionary_seq += 1
        self.dictionary_entry = None
        self.dictionary_error = ""
        self.dictionary_state = DictionaryState.IDLE

    # ── microphone ───────────────────────────────────────────────────────────
    @property
    def microphone_busy(self) -> bool:
        return self._capture is not None or self._practice_capture is not None

    def _acquire_microphone(self):
        if self.microphone_busy:
            return None
        try:
            handle = self.microphone.acquire()
        except MicrophoneDenied as e:
            logger.warning(f"⚠️ {e}")
            self.notice = MICROPHONE_DENIED_MESSAGE
            return None
        except MicrophoneUnavailable as e:
            logger.warning(f"⚠️ {e}")
            self.notice = MICROPHONE_UNAVAILABLE_MESSAGE
            return None
        self.notice = ""
        return handle

    @staticmethod
    def _finish_capture(handle) -> str:
        try:
            audio = handle.stop()
        finally:
            handle.release()
        return encode_to_transferable(audio)

    # ── dictation ────────────────────────────────────────────────────────────
    def start_recording(self) -> bool:
        if self.recording_state is not RecordingState.IDLE:
            return False
        handle = self._acquire_microphone()
        if handle is None:
            return False
        self._capture = handle
        self.recording_state = RecordingState.RECORDING
        return True

    async def stop_recording(self) -> str:
        """Stop dictation and append the transcript to the input text."""
        if self.recording_state is not RecordingState.RECORDING:
            return ""
        handle, self._capture = self._capture, None
        self.recording_state = RecordingState.TRANSCRIBING
        try:
            payload = self._finish_capture(handle)
            text = await self.client.transcribe(payload, handle.mime_type)
        except AIServiceError as e:
            self.notice = TRANSCRIPTION_QUOTA_MESSAGE if isinstance(e, RateLimited) else TRANSCRIPTION_ERROR_MESSAGE
            return ""
        finally:
            self.recording_state = RecordingState.IDLE
        if text:
            self.append_input(text)
        return text

    async def toggle_recording(self) -> bool:
        """Start or stop dictation. Returns True while recording."""
        if self.recording_state is RecordingState.RECORDING:
            await self.stop_recording()
            return False
        return self.start_recording()

    def append_input(self, text: str) -> None:
        self.input_text = self.input_text + (" " if self.input_text else "") + text

    # ── pronunciation practice ───────────────────────────────────────────────
    def start_practice(self) -> bool:
        if self.result is None or self.practice_state is not PracticeState.IDLE:
            return False
        handle = self._acquire_microphone()
        if handle is None:
            return False
        self._practice_capture = handle
        self._practice_reference = self.result.japanese
        self.practice_result = None
        self.practice_error = ""
        self.practice_state = PracticeState.RECORDING
        return True

    async def stop_practice(self) -> Optional[PronunciationResult]:
        if self.practice_state is not PracticeState.RECORDING:
            return None
        handle, self._practice_capture = self._practice_capture, None
        self.practice_state = PracticeState.EVALUATING
        try:
            payload = self._finish_capture(handle)
            result = await self.client.evaluate_pronunciation(payload, handle.mime_type, self._practice_reference)
        except AIServiceError:
            self.practice_error = PRACTICE_ERROR_MESSAGE
            return None
        finally:
            self.practice_state = PracticeState.IDLE
        self.practice_result = result
        return result

    # ── speech ───────────────────────────────────────────────────────────────
    async def speak(self, text: Optional[str] = None, speed: float = 1.0) -> Optional[PlayableAudio]:
        if not MIN_PLAYBACK_SPEED <= speed <= MAX_PLAYBACK_SPEED:
            raise ValueError(f"Playback speed must be between {MIN_PLAYBACK_SPEED} and {MAX_PLAYBACK_SPEED}")
        if text is None:
            text = self.result.japanese if self.result else ""
        try:
            audio = await self.client.synthesize_speech(text, speed)
        except SynthesisRefused:
            self.notice = SPEECH_REFUSED_MESSAGE
            return None
        except AIServiceError:
            self.notice = SPEECH_ERROR_MESSAGE
            return None
        if audio is None:
            return None
        self.player(audio)
        return audio

    # ── examples ─────────────────────────────────────────────────────────────
    def request_examples(self) -> List[asyncio.Task]:
        if self.result is None:
            return []
        tasks = [self.examples.request(item) for item in self.result.breakdown]
        return [task for task in tasks if task is not None]

    # ── settings ─────────────────────────────────────────────────────────────
    def switch_api_key(self, api_key: str) -> None:
        self.client = self.client.with_api_key(api_key)
        self.examples.client = self.client
        self.quota_exceeded = False
        self.error_message = ""
        logger.info("Switched to a different API key")

    @property
    def dark_mode(self) -> bool:
        return self.store.theme == 'dark'

    def toggle_theme(self) -> str:
        return self.store.toggle_theme()
