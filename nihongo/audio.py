"""Audio codec bridge: base64 transport, PCM decoding, capture and playback.

Gemini speech synthesis answers with raw signed 16-bit little-endian PCM at
24 kHz mono. Captured microphone audio is wrapped in a WAV container before it
is base64 encoded for transcription or pronunciation scoring.
"""
import base64
import io
import wave
from contextlib import contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional, Union

import numpy as np

from nihongo.errors import AlignmentError, MicrophoneDenied, MicrophoneUnavailable
from nihongo.logger import logger

TTS_SAMPLE_RATE = 24000
TTS_CHANNELS = 1
SAMPLE_WIDTH = 2  # bytes per 16-bit sample

CAPTURE_SAMPLE_RATE = 16000
CAPTURE_CHANNELS = 1
CAPTURE_MIME_TYPE = "audio/wav"

_READ_CHUNK = 64 * 1024


@dataclass
class PlayableAudio:
    samples: np.ndarray  # float32, shape (frames, channels), values in [-1.0, 1.0]
    sample_rate: int
    channels: int
    playback_speed: float = 1.0

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration(self) -> float:
        return self.frames / float(self.sample_rate)


def encode_to_transferable(raw_audio: Union[bytes, bytearray, memoryview, BinaryIO]) -> str:
    """Base64-encode a complete captured buffer.

    File-like objects are read to EOF before encoding, so the result always
    covers the whole recording.
    """
    if hasattr(raw_audio, "read"):
        chunks: List[bytes] = []
        while True:
            chunk = raw_audio.read(_READ_CHUNK)
            if not chunk:
                break
            chunks.append(chunk)
        data = b"".join(chunks)
    else:
        data = bytes(raw_audio)
    return base64.b64encode(data).decode("ascii")


def decode_transferable(payload: str) -> bytes:
    """Inverse of ``encode_to_transferable``; raises ``ValueError`` on invalid base64."""
    return base64.b64decode(payload, validate=True)


def decode_playable_audio(
    pcm: bytes,
    sample_rate: int = TTS_SAMPLE_RATE,
    channel_count: int = TTS_CHANNELS,
) -> PlayableAudio:
    """Interpret *pcm* as interleaved s16le samples and normalise to float32."""
    if channel_count < 1:
        raise ValueError(f"channel_count must be at least 1, got {channel_count}")
    frame_size = SAMPLE_WIDTH * channel_count
    if len(pcm) % frame_size:
        raise AlignmentError(len(pcm), frame_size)
    ints = np.frombuffer(pcm, dtype="<i2")
    samples = (ints.astype(np.float32) / 32768.0).reshape(-1, channel_count)
    return PlayableAudio(samples=samples, sample_rate=sample_rate, channels=channel_count)


def play(audio: PlayableAudio, speed: Optional[float] = None, blocking: bool = True) -> None:
    """Play *audio* on the default output device.

    The speed multiplier (``audio.playback_speed`` unless given) changes the
    playback rate only; the buffer is never resampled, so pitch moves with speed.
    """
    speed = audio.playback_speed if speed is None else speed
    if speed <= 0:
        raise ValueError(f"Playback speed must be positive, got {speed}")
    if audio.frames == 0:
        return
    import sounddevice as sd

    rate = int(round(audio.sample_rate * speed))
    logger.info(f"🔈 Playing {audio.duration:.2f}s of audio at {speed}x")
    sd.play(audio.samples, samplerate=rate)
    if blocking:
        sd.wait()


def _load_sounddevice():
    try:
        import sounddevice as sd
    except OSError as exc:  # PortAudio shared library missing
        raise MicrophoneUnavailable(f"Audio system unavailable: {exc}") from exc
    return sd


class CaptureHandle:
    """An open microphone stream; ``stop`` returns the recording as WAV bytes."""
    mime_type = CAPTURE_MIME_TYPE

    def __init__(self, sample_rate: int = CAPTURE_SAMPLE_RATE, channels: int = CAPTURE_CHANNELS):
        self.sample_rate = sample_rate
        self.channels = channels
        self._stream = None
        self._blocks: List[np.ndarray] = []
        self._released = False

    def _callback(self, indata, frame_count, time_info, status):
        if status:
            logger.warning(f"Capture status: {status}")
        self._blocks.append(indata.copy())

    @property
    def active(self) -> bool:
        return self._stream is not None and not self._released

    def release(self) -> None:
        """Stop and close the device. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
            logger.info("🎙️ Microphone released")

    def stop(self) -> bytes:
        self.release()
        return self.to_wav()

    def to_wav(self) -> bytes:
        if self._blocks:
            pcm = np.concatenate(self._blocks, axis=0).astype("<i2").tobytes()
        else:
            pcm = b""
        buffer = io.BytesIO()
        with wave.open(buffer, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(SAMPLE_WIDTH)
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm)
        return buffer.getvalue()


class Microphone:
    """Exclusive access to the default input device."""

    def __init__(self, sample_rate: int = CAPTURE_SAMPLE_RATE, channels: int = CAPTURE_CHANNELS,
                 device: Optional[Union[int, str]] = None):
        self.sample_rate = sample_rate
        self.channels = channels
        self.device = device

    def acquire(self) -> CaptureHandle:
        sd = _load_sounddevice()
        try:
            sd.query_devices(self.device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise MicrophoneUnavailable(f"No input device: {exc}") from exc

        handle = CaptureHandle(self.sample_rate, self.channels)
        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                callback=handle._callback,
            )
        except sd.PortAudioError as exc:
            raise MicrophoneDenied(f"Microphone access denied: {exc}") from exc
        handle._stream = stream
        try:
            stream.start()
        except sd.PortAudioError as exc:
            handle.release()
            raise MicrophoneDenied(f"Microphone access denied: {exc}") from exc
        logger.info("🎙️ Microphone acquired")
        return handle


@contextmanager
def recording(microphone) -> Iterator[CaptureHandle]:
    """Hold the microphone for the duration of the block; always released."""
    handle = microphone.acquire()
    try:
        yield handle
    finally:
        handle.release()
