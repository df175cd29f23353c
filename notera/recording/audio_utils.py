import base64
import io
from dataclasses import dataclass

import numpy as np
import soundfile as sf

BASE64_WINDOW_BYTES = 32 * 1024

MIME_TYPES = {
    "webm": "audio/webm",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
}
DEFAULT_EXTENSION = "webm"


@dataclass
class AudioPayload:
    """Encoded audio ready for upload: bytes plus their container type."""

    data: bytes
    mime_type: str = MIME_TYPES[DEFAULT_EXTENSION]
    extension: str = DEFAULT_EXTENSION

    def __len__(self) -> int:
        return len(self.data)


def samples_to_wav_bytes(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode float32 samples as an in-memory 16-bit PCM WAV file."""
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, subtype="PCM_16", format="WAV")
    return buffer.getvalue()


def encode_base64_chunked(data: bytes, window: int = BASE64_WINDOW_BYTES) -> str:
    """Base64-encode *data* one fixed-size window at a time.

    The window is rounded down to a multiple of 3 bytes so that no window but
    the last produces padding, which makes the concatenation identical to a
    one-shot encoding.
    """
    window = max(3, window - window % 3)
    return "".join(
        base64.b64encode(data[offset:offset + window]).decode("ascii")
        for offset in range(0, len(data), window)
    )


def extension_for_mime(mime_type: str | None) -> str:
    base = (mime_type or "").split(";")[0].strip().lower()
    for extension, known in MIME_TYPES.items():
        if known == base:
            return extension
    return DEFAULT_EXTENSION


def mime_type_for_key(key: str) -> str:
    """MIME type of a stored object, judged by its extension (webm by default)."""
    extension = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return MIME_TYPES.get(extension, MIME_TYPES[DEFAULT_EXTENSION])
