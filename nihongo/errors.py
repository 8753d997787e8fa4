"""Exception taxonomy shared by the AI client, codec, capture and store layers."""
from typing import Optional


class NihongoError(Exception):
    """Base class for every error raised by the nihongo package."""


class ConfigurationError(NihongoError):
    """Raised when required settings (e.g. the Gemini API key) are missing."""


# ──────────────────────────────────────────────────────────────────────────────
# AI SERVICE BOUNDARY
# ──────────────────────────────────────────────────────────────────────────────
class AIServiceError(NihongoError):
    """A failed round trip to the generative AI backend."""
    def __init__(self, operation: str, reason: str):
        super().__init__(f"{operation} failed: {reason}")
        self.operation = operation
        self.reason = reason


class EmptyResponse(AIServiceError):
    """The backend answered without any payload."""


class MalformedResponse(AIServiceError):
    """The payload did not validate against the requested schema."""


class NotFound(AIServiceError):
    """The backend does not recognise the dictionary query."""


class RateLimited(AIServiceError):
    """The backend signalled quota exhaustion."""
    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None):
        super().__init__(operation, reason)
        self.status_code = status_code


class SynthesisRefused(AIServiceError):
    """Speech synthesis returned text instead of audio (content filtering)."""


class ServiceError(AIServiceError):
    """Any other backend or transport failure."""
    def __init__(self, operation: str, reason: str, status_code: Optional[int] = None):
        super().__init__(operation, reason)
        self.status_code = status_code


# ──────────────────────────────────────────────────────────────────────────────
# LOCAL BOUNDARIES
# ──────────────────────────────────────────────────────────────────────────────
class ImportParseError(NihongoError):
    """An import document is not a JSON array of history records."""
    def __init__(self, reason: str, index: Optional[int] = None):
        where = f" (record {index})" if index is not None else ""
        super().__init__(f"Cannot import collection{where}: {reason}")
        self.reason = reason
        self.index = index


class CaptureError(NihongoError):
    """The microphone could not be used."""


class MicrophoneDenied(CaptureError):
    """The capture device exists but refused to open."""


class MicrophoneUnavailable(CaptureError):
    """No audio stack or no input device is present."""


class AlignmentError(NihongoError):
    """PCM byte length is not a whole number of sample frames."""
    def __init__(self, byte_length: int, frame_size: int):
        super().__init__(
            f"PCM payload of {byte_length} bytes is not aligned to "
            f"{frame_size}-byte frames"
        )
        self.byte_length = byte_length
        self.frame_size = frame_size
