import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

import numpy as np

from notera.config import settings
from notera.recording.audio_utils import AudioPayload, samples_to_wav_bytes

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "Microphone access was denied. Allow access and try again."
DEVICE_UNAVAILABLE = "No microphone could be opened: {detail}"

_PERMISSION_HINTS = ("permission", "denied", "not authorized", "notallowed")


@dataclass
class RecordingResult:
    payload: AudioPayload
    elapsed_seconds: int


class Recorder:
    """Microphone capture with pause/resume and a drift-free elapsed counter.

    Two contexts touch this object:

    1. **Audio callback**: runs in sounddevice's audio thread and only
       appends whatever frames the driver delivered.  The stream runs with
       ``blocksize=0`` so the tail of the recording is delivered before
       ``stop()`` returns; blocks are grouped into ``flush_interval_seconds``
       chunks as they accumulate.

    2. **Caller**: the API route driving start/pause/resume/stop.

    Elapsed time is computed from an absolute clock reading taken at
    ``start()`` minus the total time spent paused, so it never accumulates
    rounding error no matter how long the session or how many pauses.
    Capture-device failures never raise; they land in ``last_error``.
    """

    def __init__(
        self,
        sample_rate: int | None = None,
        flush_interval_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        stream_factory: Callable | None = None,
    ) -> None:
        self.sample_rate = sample_rate or settings.sample_rate
        self.flush_interval_seconds = flush_interval_seconds or settings.flush_interval_seconds
        self._flush_frames = max(1, int(self.sample_rate * self.flush_interval_seconds))
        self._clock = clock
        self._stream_factory = stream_factory

        # Audio buffer, guarded by _lock
        self._chunks: list[np.ndarray] = []
        self._pending: list[np.ndarray] = []
        self._pending_frames = 0
        self._lock = threading.Lock()

        self._stream = None
        self._is_recording = False
        self._is_paused = False
        self._started_at: float | None = None
        self._paused_at: float | None = None
        self._paused_total = 0.0
        self._final_elapsed = 0
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def is_recording(self) -> bool:
        return self._is_recording

    @property
    def is_paused(self) -> bool:
        return self._is_paused

    @property
    def elapsed_seconds(self) -> int:
        if self._started_at is None:
            return self._final_elapsed
        now = self._paused_at if self._is_paused else self._clock()
        active = now - self._started_at - self._paused_total
        return max(0, math.floor(active + 1e-9))

    def state(self) -> dict:
        return {
            "isRecording": self.is_recording,
            "isPaused": self.is_paused,
            "elapsedSeconds": self.elapsed_seconds,
            "lastError": self.last_error,
        }

    # ------------------------------------------------------------------
    # Transport controls
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Open the microphone. Returns False (and sets ``last_error``) on failure."""
        if self._is_recording:
            return True
        self.last_error = None
        with self._lock:
            self._chunks = []
            self._pending = []
            self._pending_frames = 0
        try:
            factory = self._stream_factory or _default_stream_factory()
            stream = factory(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=0,  # variable-size blocks, so the partial tail is delivered too
                callback=self._audio_callback,
            )
            stream.start()
        except Exception as e:  # PortAudioError, OSError, missing backend
            self.last_error = _describe_capture_error(e)
            logger.warning("Could not start recording: %s", e)
            return False

        self._stream = stream
        self._is_recording = True
        self._is_paused = False
        self._started_at = self._clock()
        self._paused_at = None
        self._paused_total = 0.0
        self._final_elapsed = 0
        return True

    def pause(self) -> None:
        if not self._is_recording or self._is_paused:
            return
        try:
            self._stream.stop()
        except Exception as e:
            self.last_error = _describe_capture_error(e)
            logger.warning("Could not pause recording: %s", e)
            return
        self._paused_at = self._clock()
        self._is_paused = True

    def resume(self) -> None:
        if not self._is_recording or not self._is_paused:
            return
        try:
            self._stream.start()
        except Exception as e:
            self.last_error = _describe_capture_error(e)
            logger.warning("Could not resume recording: %s", e)
            return
        self._paused_total += self._clock() - self._paused_at
        self._paused_at = None
        self._is_paused = False

    def stop(self) -> RecordingResult:
        """Halt capture and return the encoded recording with its final duration."""
        elapsed = self.elapsed_seconds
        if self._stream is not None:
            try:
                # stop() waits for pending blocks, so the buffer is complete after it
                if not self._is_paused:
                    self._stream.stop()
                self._stream.close()
            except Exception as e:
                self.last_error = _describe_capture_error(e)
                logger.warning("Error while closing the input stream: %s", e)
            self._stream = None

        self._is_recording = False
        self._is_paused = False
        self._started_at = None
        self._paused_at = None
        self._final_elapsed = elapsed

        with self._lock:
            chunks = self._chunks + self._pending
            self._chunks, self._pending, self._pending_frames = [], [], 0

        if chunks:
            samples = np.concatenate(chunks, axis=0).flatten()
            data = samples_to_wav_bytes(samples, self.sample_rate)
        else:
            data = b""
        return RecordingResult(
            payload=AudioPayload(data=data, mime_type="audio/wav", extension="wav"),
            elapsed_seconds=elapsed,
        )

    # ------------------------------------------------------------------
    # Audio callback (audio thread)
    # ------------------------------------------------------------------

    def _audio_callback(self, indata: np.ndarray, frames: int, timeinfo, status) -> None:  # noqa: ANN001
        """sounddevice callback.  Buffer only, no I/O."""
        with self._lock:
            self._pending.append(indata.copy())
            self._pending_frames += frames
            if self._pending_frames >= self._flush_frames:
                self._chunks.append(np.concatenate(self._pending, axis=0))
                self._pending = []
                self._pending_frames = 0


def _describe_capture_error(error: Exception) -> str:
    detail = str(error) or error.__class__.__name__
    if any(hint in detail.lower() for hint in _PERMISSION_HINTS):
        return PERMISSION_DENIED
    return DEVICE_UNAVAILABLE.format(detail=detail)


def _default_stream_factory() -> Callable:
    # Imported on first use: loading sounddevice needs the PortAudio library,
    # which headless hosts may lack; that surfaces as DeviceUnavailable.
    import sounddevice as sd

    return sd.InputStream
