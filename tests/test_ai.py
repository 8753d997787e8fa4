"""Tests for the Gemini-backed AI client."""
import asyncio
import json
import struct
from types import SimpleNamespace
from unittest.mock import Mock, patch

import numpy as np
import pytest
from google.genai import types

from nihongo.ai import GeminiClient, classify_error, clamp_score, get_ai_client
from nihongo.audio import TTS_SAMPLE_RATE, encode_to_transferable
from nihongo.config import Settings
from nihongo.errors import (
    ConfigurationError,
    EmptyResponse,
    MalformedResponse,
    NotFound,
    RateLimited,
    ServiceError,
    SynthesisRefused,
)
from nihongo.prompts import AUTO_DETECT
from nihongo.schema import DictionaryEntry, PronunciationResult, Tone, TranslationResult


def text_response(text):
    return SimpleNamespace(text=text, candidates=[])


def audio_response(*parts):
    return types.GenerateContentResponse(
        candidates=[types.Candidate(content=types.Content(role="model", parts=list(parts)))]
    )


def pcm(*samples):
    return struct.pack(f"<{len(samples)}h", *samples)


DICTIONARY_JSON = json.dumps({
    "word": "食べる",
    "reading": "たべる",
    "romaji": "taberu",
    "meanings": ["to eat"],
    "partOfSpeech": "Ichidan verb",
    "jlptLevel": "N5",
    "exampleSentences": [{"ja": "寿司を食べる。", "en": "I eat sushi."}],
})


class TestClassifyError:
    """Errors raised by the SDK map onto the taxonomy."""

    def test_status_code_429_is_rate_limited(self):
        exc = Exception("Too many requests")
        exc.code = 429
        error = classify_error("translate", exc)
        assert isinstance(error, RateLimited)
        assert error.status_code == 429
        assert error.operation == "translate"

    def test_quota_keyword_is_rate_limited(self):
        error = classify_error("translate", RuntimeError("RESOURCE_EXHAUSTED: quota used up"))
        assert isinstance(error, RateLimited)
        assert error.status_code is None

    def test_429_in_message_is_rate_limited(self):
        assert isinstance(classify_error("translate", RuntimeError("HTTP 429")), RateLimited)

    def test_sdk_client_error(self):
        from google.genai import errors
        exc = errors.ClientError(429, {"error": {"code": 429, "message": "Resource has been exhausted",
                                                 "status": "RESOURCE_EXHAUSTED"}})
        assert isinstance(classify_error("lookup_dictionary", exc), RateLimited)

    def test_other_failures_are_service_errors(self):
        exc = Exception("Internal error")
        exc.code = 500
        error = classify_error("transcribe", exc)
        assert isinstance(error, ServiceError)
        assert error.status_code == 500

    def test_non_integer_code_is_ignored(self):
        exc = ConnectionError("connection reset")
        exc.code = "ECONNRESET"
        error = classify_error("transcribe", exc)
        assert isinstance(error, ServiceError)
        assert error.status_code is None

    def test_taxonomy_errors_pass_through(self):
        original = NotFound("lookup_dictionary", "nope")
        assert classify_error("lookup_dictionary", original) is original


def test_clamp_score():
    assert clamp_score(-5) == 0
    assert clamp_score(55) == 55
    assert clamp_score(150) == 100


class TestClientSetup:
    """Client construction and key handling."""

    def test_gemini_setup(self):
        with patch('google.genai.Client') as mock_genai:
            mock_client = Mock()
            mock_genai.return_value = mock_client

            client = GeminiClient(api_key='test-key', model='gemini-pro')
            assert client.client is mock_client
            assert client.model == 'gemini-pro'
            mock_genai.assert_called_once_with(api_key='test-key')

    def test_missing_key(self):
        with pytest.raises(ConfigurationError):
            GeminiClient(api_key=None)
        with pytest.raises(ConfigurationError):
            GeminiClient(api_key="")

    def test_get_ai_client_from_settings(self, mock_genai_client):
        settings = Settings(api_key='test-key', model='m1', tts_model='m2', voice='Puck')
        client = get_ai_client(settings)
        assert (client.model, client.tts_model, client.voice) == ('m1', 'm2', 'Puck')

    def test_get_ai_client_from_environment(self, mock_genai_client):
        with patch('google.genai.Client') as mock_genai:
            get_ai_client()
            mock_genai.assert_called_once_with(api_key='test-key')

    def test_with_api_key_keeps_configuration(self, gemini):
        with patch('google.genai.Client') as mock_genai:
            other = gemini.with_api_key('user-key')
            mock_genai.assert_called_once_with(api_key='user-key')
        assert other is not gemini
        assert other.model == gemini.model
        assert other.voice == gemini.voice


class TestTranslate:
    """Structured translation."""

    def test_success(self, gemini, mock_genai_client, sample_translation):
        mock_genai_client.aio.models.generate_content.return_value = text_response(
            sample_translation.model_dump_json())

        result = asyncio.run(gemini.translate("Good morning"))

        assert isinstance(result, TranslationResult)
        assert result.japanese == "おはようございます"
        assert result.tone is Tone.POLITE
        assert len(result.breakdown) == 2

    def test_request_is_schema_constrained(self, gemini, mock_genai_client, sample_translation):
        mock_genai_client.aio.models.generate_content.return_value = text_response(
            sample_translation.model_dump_json())

        asyncio.run(gemini.translate("  Good morning  ", "en"))

        kwargs = mock_genai_client.aio.models.generate_content.call_args.kwargs
        assert kwargs['model'] == gemini.model
        assert kwargs['config']['response_mime_type'] == 'application/json'
        assert kwargs['config']['response_schema'] is TranslationResult
        assert kwargs['config']['system_instruction'] == gemini.system_instruction
        assert "Good morning" in kwargs['contents']
        assert "English" in kwargs['contents']

    def test_blank_input_is_rejected_locally(self, gemini, mock_genai_client):
        with pytest.raises(ValueError):
            asyncio.run(gemini.translate("   ", AUTO_DETECT))
        mock_genai_client.aio.models.generate_content.assert_not_called()

    @pytest.mark.parametrize("text", [None, "", "  \n"])
    def test_empty_response(self, gemini, mock_genai_client, text):
        mock_genai_client.aio.models.generate_content.return_value = text_response(text)
        with pytest.raises(EmptyResponse):
            asyncio.run(gemini.translate("Hello"))

    def test_invalid_json(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response("{not json")
        with pytest.raises(MalformedResponse):
            asyncio.run(gemini.translate("Hello"))

    def test_missing_required_field(self, gemini, mock_genai_client, sample_translation):
        payload = sample_translation.model_dump(mode="json")
        del payload["romaji"]
        mock_genai_client.aio.models.generate_content.return_value = text_response(json.dumps(payload))
        with pytest.raises(MalformedResponse):
            asyncio.run(gemini.translate("Hello"))

    def test_unknown_tone(self, gemini, mock_genai_client, sample_translation):
        payload = sample_translation.model_dump(mode="json")
        payload["tone"] = "Rude"
        mock_genai_client.aio.models.generate_content.return_value = text_response(json.dumps(payload))
        with pytest.raises(MalformedResponse):
            asyncio.run(gemini.translate("Hello"))

    def test_quota_exhausted(self, gemini, mock_genai_client):
        exc = Exception("429 RESOURCE_EXHAUSTED")
        exc.code = 429
        mock_genai_client.aio.models.generate_content.side_effect = exc
        with pytest.raises(RateLimited) as info:
            asyncio.run(gemini.translate("Hello"))
        assert info.value.__cause__ is exc

    def test_transport_failure(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.side_effect = ConnectionError("network down")
        with pytest.raises(ServiceError):
            asyncio.run(gemini.translate("Hello"))


class TestLookupDictionary:
    """Dictionary lookups."""

    def test_success(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response(DICTIONARY_JSON)

        entry = asyncio.run(gemini.lookup_dictionary("taberu"))

        assert isinstance(entry, DictionaryEntry)
        assert entry.word == "食べる"
        assert entry.exampleSentences[0].en == "I eat sushi."
        config = mock_genai_client.aio.models.generate_content.call_args.kwargs['config']
        assert config['response_schema'] is DictionaryEntry

    def test_not_found_marker(self, gemini, mock_genai_client):
        payload = json.loads(DICTIONARY_JSON)
        payload.update(word="NOT_FOUND", meanings=[])
        mock_genai_client.aio.models.generate_content.return_value = text_response(json.dumps(payload))
        with pytest.raises(NotFound):
            asyncio.run(gemini.lookup_dictionary("xyzzy"))

    def test_no_meanings_is_not_found(self, gemini, mock_genai_client):
        payload = json.loads(DICTIONARY_JSON)
        payload["meanings"] = []
        mock_genai_client.aio.models.generate_content.return_value = text_response(json.dumps(payload))
        with pytest.raises(NotFound):
            asyncio.run(gemini.lookup_dictionary("xyzzy"))

    def test_empty_payload(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response("")
        with pytest.raises(EmptyResponse):
            asyncio.run(gemini.lookup_dictionary("taberu"))


class TestTranscribe:
    """Speech to text."""

    def test_returns_text(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response(" こんにちは \n")
        payload = encode_to_transferable(b"RIFF-audio")

        text = asyncio.run(gemini.transcribe(payload, "audio/wav"))

        assert text == "こんにちは"
        contents = mock_genai_client.aio.models.generate_content.call_args.kwargs['contents']
        assert contents[0].inline_data.data == b"RIFF-audio"
        assert contents[0].inline_data.mime_type == "audio/wav"

    def test_nothing_detected(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response(None)
        assert asyncio.run(gemini.transcribe(encode_to_transferable(b"\x00\x00"), "audio/wav")) == ""

    @pytest.mark.parametrize("payload", ["%%%not-base64%%%", "abc"])
    def test_invalid_payload(self, gemini, mock_genai_client, payload):
        with pytest.raises(ValueError, match="transcribe"):
            asyncio.run(gemini.transcribe(payload, "audio/wav"))
        mock_genai_client.aio.models.generate_content.assert_not_called()

    def test_failure(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.side_effect = RuntimeError("boom")
        with pytest.raises(ServiceError):
            asyncio.run(gemini.transcribe(encode_to_transferable(b"x"), "audio/wav"))


class TestEvaluatePronunciation:
    """Pronunciation scoring."""

    def _respond(self, mock_genai_client, score):
        mock_genai_client.aio.models.generate_content.return_value = text_response(json.dumps({
            "score": score, "transcript": "こんにちは", "feedback": "Nice pitch accent."}))

    def test_success(self, gemini, mock_genai_client):
        self._respond(mock_genai_client, 87)

        result = asyncio.run(gemini.evaluate_pronunciation(
            encode_to_transferable(b"wav"), "audio/wav", "こんにちは"))

        assert isinstance(result, PronunciationResult)
        assert result.score == 87
        kwargs = mock_genai_client.aio.models.generate_content.call_args.kwargs
        assert "こんにちは" in kwargs['contents'][1]
        assert kwargs['config']['response_schema'] is PronunciationResult

    @pytest.mark.parametrize("raw,expected", [(150, 100), (-3, 0)])
    def test_score_is_clamped(self, gemini, mock_genai_client, raw, expected):
        self._respond(mock_genai_client, raw)
        result = asyncio.run(gemini.evaluate_pronunciation(
            encode_to_transferable(b"wav"), "audio/wav", "こんにちは"))
        assert result.score == expected

    def test_invalid_payload(self, gemini, mock_genai_client):
        with pytest.raises(ValueError, match="evaluate_pronunciation"):
            asyncio.run(gemini.evaluate_pronunciation("not base64!", "audio/wav", "はい"))
        mock_genai_client.aio.models.generate_content.assert_not_called()

    def test_missing_field(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response('{"score": 50}')
        with pytest.raises(MalformedResponse):
            asyncio.run(gemini.evaluate_pronunciation(encode_to_transferable(b"wav"), "audio/wav", "はい"))


class TestSynthesizeSpeech:
    """Text to speech."""

    @pytest.mark.parametrize("text", ["", "   ", None])
    def test_empty_text_is_noop(self, gemini, mock_genai_client, text):
        assert asyncio.run(gemini.synthesize_speech(text)) is None
        mock_genai_client.aio.models.generate_content.assert_not_called()

    def test_audio_is_decoded(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = audio_response(
            types.Part(inline_data=types.Blob(data=pcm(0, 16384, -32768), mime_type="audio/L16;rate=24000")))

        audio = asyncio.run(gemini.synthesize_speech("こんにちは", speed=0.75))

        assert audio.sample_rate == TTS_SAMPLE_RATE
        assert audio.channels == 1
        assert audio.frames == 3
        assert audio.playback_speed == 0.75
        np.testing.assert_allclose(audio.samples[:, 0], [0.0, 0.5, -1.0])

    def test_request_uses_tts_model_and_voice(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = audio_response(
            types.Part(inline_data=types.Blob(data=pcm(1, 2), mime_type="audio/L16")))

        asyncio.run(gemini.synthesize_speech("はい"))

        kwargs = mock_genai_client.aio.models.generate_content.call_args.kwargs
        assert kwargs['model'] == gemini.tts_model
        assert kwargs['contents'] == "はい"
        assert kwargs['config']['response_modalities'] == ['AUDIO']
        voice = kwargs['config']['speech_config']['voice_config']['prebuilt_voice_config']['voice_name']
        assert voice == 'Kore'

    def test_text_instead_of_audio_is_refusal(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = audio_response(
            types.Part(text="I can't read that aloud."))
        with pytest.raises(SynthesisRefused) as info:
            asyncio.run(gemini.synthesize_speech("何か"))
        assert "can't read" in info.value.reason

    def test_no_candidates(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = types.GenerateContentResponse(candidates=[])
        with pytest.raises(EmptyResponse):
            asyncio.run(gemini.synthesize_speech("何か"))

    def test_non_positive_speed(self, gemini, mock_genai_client):
        with pytest.raises(ValueError):
            asyncio.run(gemini.synthesize_speech("はい", speed=0))
        mock_genai_client.aio.models.generate_content.assert_not_called()

    def test_quota(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.side_effect = RuntimeError("You exceeded your current quota")
        with pytest.raises(RateLimited):
            asyncio.run(gemini.synthesize_speech("はい"))


class TestFetchExampleSentence:
    def test_success(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response(
            "毎朝パンを食べます。 (I eat bread every morning.)\n")
        sentence = asyncio.run(gemini.fetch_example_sentence("食べる", "to eat"))
        assert sentence == "毎朝パンを食べます。 (I eat bread every morning.)"
        contents = mock_genai_client.aio.models.generate_content.call_args.kwargs['contents']
        assert "食べる" in contents and "to eat" in contents

    def test_empty(self, gemini, mock_genai_client):
        mock_genai_client.aio.models.generate_content.return_value = text_response("")
        with pytest.raises(EmptyResponse):
            asyncio.run(gemini.fetch_example_sentence("食べる", "to eat"))
