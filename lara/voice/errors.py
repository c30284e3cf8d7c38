from __future__ import annotations

from enum import Enum


class CaptureErrorCode(str, Enum):
    NO_SPEECH = "no-speech"
    ABORTED = "aborted"
    NOT_ALLOWED = "not-allowed"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network-error"
    SERVICE_NOT_AVAILABLE = "service-not-available"
    UNKNOWN = "unknown"

    def is_benign(self) -> bool:
        return self in {CaptureErrorCode.NO_SPEECH, CaptureErrorCode.ABORTED}

    def is_fatal(self) -> bool:
        # Retrying cannot help until the user or operator changes something.
        return self in {CaptureErrorCode.NOT_ALLOWED, CaptureErrorCode.AUDIO_CAPTURE, CaptureErrorCode.SERVICE_NOT_AVAILABLE}


class VoiceError(RuntimeError):
    pass


class DependencyMissing(VoiceError):
    pass


class ModelNotConfigured(VoiceError):
    pass


class AudioError(VoiceError):
    pass


class CaptureError(VoiceError):
    def __init__(self, code: CaptureErrorCode, message: str = ""):
        super().__init__(message or code.value)
        self.code = code


class TTSError(VoiceError):
    pass
