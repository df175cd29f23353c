from notera.recording.audio_utils import AudioPayload
from notera.recording.recorder import Recorder, RecordingResult

__all__ = ["AudioPayload", "Recorder", "RecordingResult"]
