from __future__ import annotations

import io

import soundfile as sf

from conftest import FakeClock, FakeStream
from notera.recording.recorder import DEVICE_UNAVAILABLE, PERMISSION_DENIED, Recorder


def _recorder(clock: FakeClock) -> Recorder:
    return Recorder(16_000, 1.0, clock=clock, stream_factory=FakeStream)


def test_elapsed_counts_only_unpaused_time() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)
    assert recorder.start()

    clock.advance(10.4)
    recorder.pause()
    clock.advance(120)
    assert recorder.elapsed_seconds == 10
    recorder.resume()
    clock.advance(5.0)

    result = recorder.stop()
    assert result.elapsed_seconds == 15
    assert not recorder.is_recording
    assert recorder.elapsed_seconds == 15


def test_elapsed_does_not_drift_over_many_pause_cycles() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)
    recorder.start()

    for _ in range(1000):
        clock.advance(0.3)
        recorder.pause()
        clock.advance(1.7)
        recorder.resume()

    result = recorder.stop()
    assert abs(result.elapsed_seconds - 300) <= 1


def test_pause_and_resume_are_noops_in_wrong_state() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)

    recorder.pause()
    recorder.resume()
    assert not recorder.is_recording
    assert not recorder.is_paused

    recorder.start()
    recorder.resume()
    assert not recorder.is_paused
    recorder.pause()
    recorder.pause()
    assert recorder.is_paused
    assert not FakeStream.instances[-1].active


def test_permission_error_becomes_message() -> None:
    def denied(**kwargs):
        raise OSError("Permission denied by the operating system")

    recorder = Recorder(16_000, 1.0, stream_factory=denied)
    assert recorder.start() is False
    assert recorder.last_error == PERMISSION_DENIED
    assert not recorder.is_recording


def test_missing_device_becomes_message() -> None:
    def missing(**kwargs):
        raise RuntimeError("Error querying device -1")

    recorder = Recorder(16_000, 1.0, stream_factory=missing)
    assert recorder.start() is False
    assert recorder.last_error == DEVICE_UNAVAILABLE.format(detail="Error querying device -1")


def test_stop_returns_wav_payload_with_all_chunks() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)
    recorder.start()
    stream = FakeStream.instances[-1]
    assert stream.blocksize == 0

    stream.feed(2)
    clock.advance(2)
    result = recorder.stop()

    assert stream.closed
    assert result.payload.extension == "wav"
    assert result.payload.mime_type == "audio/wav"
    samples, rate = sf.read(io.BytesIO(result.payload.data))
    assert rate == 16_000
    assert len(samples) == 32_000
    assert result.elapsed_seconds == 2


def test_stop_keeps_the_partial_final_block() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)
    recorder.start()
    stream = FakeStream.instances[-1]

    stream.feed(3, frames=512)
    stream.feed(1, value=0.5, frames=16_000)
    stream.feed(1, value=0.25, frames=300)
    clock.advance(1.1)
    result = recorder.stop()

    samples, _ = sf.read(io.BytesIO(result.payload.data), dtype="float32")
    assert len(samples) == 3 * 512 + 16_000 + 300
    assert abs(samples[-1] - 0.25) < 1e-3
    assert abs(samples[-301] - 0.5) < 1e-3


def test_stop_without_audio_gives_empty_payload_and_recorder_can_restart() -> None:
    clock = FakeClock()
    recorder = _recorder(clock)
    recorder.start()
    result = recorder.stop()
    assert result.payload.data == b""
    assert len(result.payload) == 0

    assert recorder.start()
    assert recorder.is_recording
    assert recorder.state()["elapsedSeconds"] == 0
