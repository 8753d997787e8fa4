from typing import Any, List, Optional, Tuple, Type, TypeVar

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from nihongo import prompts
from nihongo.audio import (
    TTS_CHANNELS,
    TTS_SAMPLE_RATE,
    PlayableAudio,
    decode_playable_audio,
    decode_transferable,
)
from nihongo.config import DEFAULT_MODEL, DEFAULT_TTS_MODEL, DEFAULT_VOICE, Settings
from nihongo.errors import (
    AIServiceError,
    ConfigurationError,
    EmptyResponse,
    MalformedResponse,
    NotFound,
    RateLimited,
    ServiceError,
    SynthesisRefused,
)
from nihongo.logger import logger
from nihongo.schema import DictionaryEntry, PronunciationResult, TranslationResult

T = TypeVar('T', bound=BaseModel)

RATE_LIMIT_STATUS = 429
QUOTA_KEYWORDS = ("quota", "resource_exhausted", "rate limit")

SCORE_MIN = 0
SCORE_MAX = 100


def classify_error(operation: str, exc: BaseException) -> AIServiceError:
    """Map any exception raised by the SDK or transport onto the error taxonomy."""
    if isinstance(exc, AIServiceError):
        return exc
    code = getattr(exc, "code", None)
    if not isinstance(code, int):
        code = None
    message = str(exc) or type(exc).__name__
    lowered = message.lower()
    if code == RATE_LIMIT_STATUS or str(RATE_LIMIT_STATUS) in message or any(k in lowered for k in QUOTA_KEYWORDS):
        return RateLimited(operation, message, status_code=code)
    return ServiceError(operation, message, status_code=code)


def clamp_score(score: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, score))


def _audio_part(operation: str, audio_payload: str, mime_type: str) -> types.Part:
    try:
        data = decode_transferable(audio_payload)
    except ValueError as exc:  # binascii.Error, or non-ASCII input
        raise ValueError(f"{operation}: audio payload is not valid base64 ({exc})") from exc
    return types.Part.from_bytes(data=data, mime_type=mime_type)


def _response_parts(response: Any) -> List[Any]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], "content", None)
    return list(getattr(content, "parts", None) or [])


def _split_audio_and_text(response: Any) -> Tuple[Optional[bytes], str]:
    """Return the first inline audio payload and any text the model sent instead."""
    audio = None
    texts = []
    for part in _response_parts(response):
        inline = getattr(part, "inline_data", None)
        if audio is None and inline is not None and getattr(inline, "data", None):
            audio = inline.data
            if isinstance(audio, str):
                try:
                    audio = decode_transferable(audio)
                except ValueError as exc:  # binascii.Error, or non-ASCII input
                    raise MalformedResponse("synthesize_speech", f"audio is not valid base64 ({exc})") from exc
        text = getattr(part, "text", None)
        if text:
            texts.append(text)
    return audio, " ".join(texts).strip()


class GeminiClient:
    """Async client for the five learning operations backed by Gemini.

    Every call is a single stateless request; nothing is retried here and
    every failure surfaces as an ``AIServiceError`` subclass.
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        tts_model: str = DEFAULT_TTS_MODEL,
        voice: str = DEFAULT_VOICE,
        system_instruction: str = prompts.SYSTEM_INSTRUCTION,
    ):
        if not api_key:
            raise ConfigurationError("GEMINI_KEY must be set in environment")
        self.model = model
        self.tts_model = tts_model
        self.voice = voice
        self.system_instruction = system_instruction
        self.client = genai.Client(api_key=api_key)

    def with_api_key(self, api_key: str) -> "GeminiClient":
        """Same configuration, different key."""
        return GeminiClient(
            api_key,
            model=self.model,
            tts_model=self.tts_model,
            voice=self.voice,
            system_instruction=self.system_instruction,
        )

    async def _generate(self, operation: str, model: str, contents: Any, config: Optional[dict] = None):
        try:
            return await self.client.aio.models.generate_content(
                model=model,
                contents=contents,
                config=config,
            )
        except Exception as exc:
            error = classify_error(operation, exc)
            logger.error(f"❌ {operation} failed ({type(error).__name__}): {error.reason}")
            raise error from exc

    async def _complete_json(self, operation: str, contents: Any, response_schema: Type[T]) -> T:
        """
        Send one schema-constrained request and validate the reply.

        Args:
            operation: Name used in logs and errors
            contents: Prompt text or a list of parts
            response_schema: Pydantic model the reply must satisfy
        """
        config = {
            'system_instruction': self.system_instruction,
            'response_mime_type': 'application/json',
            'response_schema': response_schema,
        }
        response = await self._generate(operation, self.model, contents, config)
        text = getattr(response, "text", None)
        if not text or not text.strip():
            logger.error(f"❌ {operation} returned an empty response")
            raise EmptyResponse(operation, "backend returned no payload")
        try:
            return response_schema.model_validate_json(text)
        except ValidationError as exc:
            logger.error(f"❌ {operation} returned a malformed response: {exc.error_count()} validation error(s)")
            raise MalformedResponse(operation, str(exc)) from exc

    async def translate(self, text: str, source_language: str = prompts.AUTO_DETECT) -> TranslationResult:
        text = text.strip()
        if not text:
            raise ValueError("Nothing to translate")
        logger.info(f"🈯 Translating {len(text)} characters from '{source_language}'")
        result = await self._complete_json(
            "translate",
            prompts.get_translate_prompt(text, source_language),
            TranslationResult,
        )
        logger.info(f"✅ Translated to {result.japanese} ({result.tone.value})")
        return result

    async def lookup_dictionary(self, query: str) -> DictionaryEntry:
        query = query.strip()
        if not query:
            raise ValueError("Nothing to look up")
        logger.info(f"📖 Dictionary lookup: {query}")
        entry = await self._complete_json(
            "lookup_dictionary",
            prompts.get_dictionary_prompt(query),
            DictionaryEntry,
        )
        if entry.word.strip().upper() == prompts.NOT_FOUND_MARKER or not entry.meanings:
            logger.warning(f"⚠️ No dictionary entry for: {query}")
            raise NotFound("lookup_dictionary", f"'{query}' is not a recognised Japanese word")
        return entry

    async def transcribe(self, audio_payload: str, mime_type: str) -> str:
        """Speech to text. An empty string means nothing was detected."""
        contents = [
            _audio_part("transcribe", audio_payload, mime_type),
            prompts.TRANSCRIBE_PROMPT,
        ]
        response = await self._generate("transcribe", self.model, contents)
        text = (getattr(response, "text", None) or "").strip()
        if not text:
            logger.info("Transcription detected no speech")
        return text

    async def evaluate_pronunciation(self, audio_payload: str, mime_type: str,
                                     reference_text: str) -> PronunciationResult:
        contents = [
            _audio_part("evaluate_pronunciation", audio_payload, mime_type),
            prompts.get_pronunciation_prompt(reference_text),
        ]
        result = await self._complete_json("evaluate_pronunciation", contents, PronunciationResult)
        score = clamp_score(result.score)
        if score != result.score:
            logger.warning(f"⚠️ Pronunciation score {result.score} out of range, clamped to {score}")
            result = result.model_copy(update={"score": score})
        return result

    async def synthesize_speech(self, text: str, speed: float = 1.0) -> Optional[PlayableAudio]:
        """Japanese text to speech. Empty text is a no-op and returns None."""
        clean_text = (text or "").strip()
        if not clean_text:
            return None
        if speed <= 0:
            raise ValueError(f"Playback speed must be positive, got {speed}")
        config = {
            'response_modalities': ['AUDIO'],
            'speech_config': {
                'voice_config': {'prebuilt_voice_config': {'voice_name': self.voice}},
            },
            'safety_settings': [
                {'category': 'HARM_CATEGORY_HARASSMENT', 'threshold': 'BLOCK_NONE'},
            ],
        }
        response = await self._generate("synthesize_speech", self.tts_model, clean_text, config)
        audio, refusal = _split_audio_and_text(response)
        if audio is None:
            if refusal:
                logger.warning(f"⚠️ Speech synthesis refused: {refusal}")
                raise SynthesisRefused("synthesize_speech", refusal)
            raise EmptyResponse("synthesize_speech", "backend returned no audio")
        playable = decode_playable_audio(audio, TTS_SAMPLE_RATE, TTS_CHANNELS)
        playable.playback_speed = speed
        return playable

    async def fetch_example_sentence(self, word: str, meaning: str) -> str:
        """One example sentence as "<Japanese> (<translation>)"."""
        response = await self._generate(
            "fetch_example_sentence",
            self.model,
            prompts.get_example_sentence_prompt(word, meaning),
        )
        text = (getattr(response, "text", None) or "").strip()
        if not text:
            raise EmptyResponse("fetch_example_sentence", "backend returned no sentence")
        return text


def get_ai_client(settings: Optional[Settings] = None) -> GeminiClient:
    settings = settings or Settings.from_env()
    return GeminiClient(
        settings.api_key,
        model=settings.model,
        tts_model=settings.tts_model,
        voice=settings.voice,
    )
