import asyncio
import io
import time

import pytest
import soundfile as sf

from opic_coach.audio import SoundDeviceCapture
from opic_coach.errors import PermissionDenied, RecordingInProgress
from opic_coach.recording import RecordingController, RecordingState

from conftest import FakeCapture

CHUNK = b"\x01\x00\x02\x00" * 400  # 800 samples


class SlowCapture(FakeCapture):
	async def open(self, on_chunk) -> None:
		await asyncio.sleep(5)


def test_stop_yields_wav_clip_of_captured_audio():
	device = FakeCapture()
	recorder = RecordingController(device, sample_rate=16000)

	async def scenario():
		await recorder.start({"question": "Tell me about your home."})
		device.feed(CHUNK)
		device.feed(CHUNK)
		return await recorder.stop()

	clip = asyncio.run(scenario())
	assert clip is not None
	assert clip.mime_type == "audio/wav"
	assert clip.duration_seconds == pytest.approx(1600 / 16000)
	samples, rate = sf.read(io.BytesIO(clip.data), dtype="int16")
	assert rate == 16000
	assert len(samples) == 1600
	assert recorder.state is RecordingState.COMPLETED
	assert recorder.context == {"question": "Tell me about your home."}
	assert device.closed == 1


def test_cancel_never_yields_clip():
	device = FakeCapture()
	recorder = RecordingController(device)

	async def scenario():
		await recorder.start()
		device.feed(CHUNK)
		await recorder.cancel()
		return await recorder.stop()

	assert asyncio.run(scenario()) is None
	assert recorder.state is RecordingState.CANCELLED
	assert recorder.session is None
	assert device.closed == 1


def test_chunks_while_paused_are_dropped():
	device = FakeCapture()
	recorder = RecordingController(device, sample_rate=16000)

	async def scenario():
		await recorder.start()
		device.feed(CHUNK)
		recorder.pause()
		device.feed(CHUNK)
		assert recorder.snapshot()["state"] == "paused"
		recorder.resume()
		device.feed(CHUNK)
		return await recorder.stop()

	clip = asyncio.run(scenario())
	assert clip.duration_seconds == pytest.approx(1600 / 16000)
	assert device.paused == 1 and device.resumed == 1


def test_pause_and_resume_are_noops_when_idle():
	device = FakeCapture()
	recorder = RecordingController(device)
	recorder.pause()
	recorder.resume()
	assert recorder.state is RecordingState.IDLE
	assert device.paused == 0 and device.resumed == 0


def test_second_start_is_rejected():
	device = FakeCapture()
	recorder = RecordingController(device)

	async def scenario():
		await recorder.start()
		with pytest.raises(RecordingInProgress):
			await recorder.start()
		await recorder.cancel()
		# a fresh take is allowed after cancel
		await recorder.start()

	asyncio.run(scenario())
	assert recorder.state is RecordingState.RECORDING
	assert device.opened == 2


def test_denied_device_returns_to_idle():
	recorder = RecordingController(FakeCapture(fail=True))

	async def scenario():
		with pytest.raises(PermissionDenied):
			await recorder.start()

	asyncio.run(scenario())
	assert recorder.state is RecordingState.IDLE
	assert recorder.session is None


def test_device_open_timeout_is_permission_denied():
	recorder = RecordingController(SlowCapture(), open_timeout=0.01)

	async def scenario():
		with pytest.raises(PermissionDenied):
			await recorder.start()

	asyncio.run(scenario())
	assert recorder.state is RecordingState.IDLE


def test_start_runs_hook():
	seen = []
	recorder = RecordingController(FakeCapture(), on_start=lambda: seen.append("reset"))
	asyncio.run(recorder.start())
	assert seen == ["reset"]


def test_denied_device_keeps_previous_result():
	seen = []
	recorder = RecordingController(FakeCapture(fail=True), on_start=lambda: seen.append("reset"))

	async def scenario():
		with pytest.raises(PermissionDenied):
			await recorder.start()

	asyncio.run(scenario())
	assert seen == []


class SlowStream:
	"""Stands in for a PortAudio input stream that takes a while to start."""

	made = []

	def __init__(self, callback=None, **kwargs):
		self.callback = callback
		self.kwargs = kwargs
		self.active = False
		self.closed = False
		SlowStream.made.append(self)

	def start(self):
		time.sleep(0.2)
		self.active = True

	def stop(self):
		self.active = False

	def close(self):
		self.closed = True


def test_stream_started_after_open_timeout_is_closed():
	SlowStream.made = []
	capture = SoundDeviceCapture(stream_factory=SlowStream)
	recorder = RecordingController(capture, open_timeout=0.05)

	async def scenario():
		with pytest.raises(PermissionDenied):
			await recorder.start()
		await asyncio.sleep(0.5)
		return SlowStream.made[0]

	stream = asyncio.run(scenario())
	assert recorder.state is RecordingState.IDLE
	assert stream.closed
	assert not stream.active


def test_stale_stream_does_not_feed_the_next_take():
	SlowStream.made = []
	capture = SoundDeviceCapture(stream_factory=SlowStream)

	async def scenario():
		stale = []
		with pytest.raises(asyncio.TimeoutError):
			await asyncio.wait_for(capture.open(stale.append), timeout=0.05)
		await asyncio.sleep(0.5)
		fresh = []
		await capture.open(fresh.append)
		SlowStream.made[0].callback(b"\x01\x00" * 4, 4, None, None)
		SlowStream.made[1].callback(b"\x02\x00" * 4, 4, None, None)
		await asyncio.sleep(0)
		capture.close()
		return stale, fresh

	stale, fresh = asyncio.run(scenario())
	assert stale == []
	assert fresh == [b"\x02\x00" * 4]
	assert all(s.closed for s in SlowStream.made)
