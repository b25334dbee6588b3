"""
Audio codecs and local devices.

Two encodings are played back: raw 16-bit little-endian mono PCM (what the
speech-synthesis backend returns) and WAV containers (what the recorder
produces). Device access goes through sounddevice and pyttsx3, imported lazily
so the service still boots on hosts without PortAudio or a speech engine.
"""

from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from .errors import AudioDecodeError, PermissionDenied

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioClip:
	"""A finished recording ready for upload and grading."""
	data: bytes
	mime_type: str = "audio/wav"
	sample_rate: int = 16000
	duration_seconds: float = 0.0


@dataclass
class DecodedAudio:
	samples: np.ndarray  # float32 in [-1, 1]
	sample_rate: int

	@property
	def duration_seconds(self) -> float:
		if not self.sample_rate:
			return 0.0
		return len(self.samples) / float(self.sample_rate)


def apply_gain(pcm: bytes, gain: float) -> bytes:
	if gain == 1.0 or not pcm:
		return pcm
	samples = np.frombuffer(pcm, dtype="<i2").astype(np.float32) * gain
	return np.clip(samples, -32768, 32767).astype("<i2").tobytes()


def pcm16_to_wav(pcm: bytes, sample_rate: int) -> bytes:
	samples = np.frombuffer(pcm, dtype="<i2")
	buf = io.BytesIO()
	sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
	return buf.getvalue()


def decode_raw_pcm(data: bytes, sample_rate: int) -> DecodedAudio:
	if not data:
		raise AudioDecodeError("empty PCM payload")
	if len(data) % 2:
		raise AudioDecodeError(f"PCM payload has odd length {len(data)}")
	samples = np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0
	return DecodedAudio(samples=samples, sample_rate=sample_rate)


def decode_container(data: bytes) -> DecodedAudio:
	"""Decode a self-describing audio file (WAV, FLAC, OGG)."""
	if not data:
		raise AudioDecodeError("empty audio file")
	try:
		samples, sample_rate = sf.read(io.BytesIO(data), dtype="float32")
	except RuntimeError as exc:
		raise AudioDecodeError(f"unreadable audio container: {exc}") from exc
	return DecodedAudio(samples=samples, sample_rate=int(sample_rate))


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

class SoundDeviceCapture:
	"""Microphone input as ordered int16 byte chunks."""

	def __init__(
		self,
		sample_rate: int = 16000,
		gain: float = 1.0,
		blocksize: int = 2048,
		stream_factory: Optional[Callable[..., object]] = None,
	) -> None:
		self.sample_rate = sample_rate
		self.gain = gain
		self.blocksize = blocksize
		self._stream_factory = stream_factory
		self._stream = None
		self._token: Optional[object] = None

	def _make_stream(self, callback):
		factory = self._stream_factory
		if factory is None:
			import sounddevice as sd
			factory = sd.RawInputStream
		return factory(
			samplerate=self.sample_rate,
			channels=1,
			dtype="int16",
			blocksize=self.blocksize,
			callback=callback,
		)

	async def open(self, on_chunk: Callable[[bytes], None]) -> None:
		loop = asyncio.get_running_loop()
		token = object()
		self._token = token

		def _deliver(chunk: bytes) -> None:
			# Only the stream of the current open may feed the caller
			if self._token is token:
				on_chunk(chunk)

		def _callback(indata, frames, time_info, status) -> None:
			if status:
				logger.debug("capture status: %s", status)
			# Copy out of PortAudio's buffer before leaving the callback
			chunk = apply_gain(bytes(indata), self.gain)
			loop.call_soon_threadsafe(_deliver, chunk)

		def _open():
			stream = self._make_stream(_callback)
			stream.start()
			return stream

		def _discard(fut: "asyncio.Future") -> None:
			if fut.cancelled() or fut.exception() is not None:
				return
			logger.warning("closing microphone stream opened after the caller gave up")
			_close_stream(fut.result())

		pending = loop.run_in_executor(None, _open)
		try:
			stream = await asyncio.shield(pending)
		except asyncio.CancelledError:
			if self._token is token:
				self._token = None
			pending.add_done_callback(_discard)
			raise
		except Exception as exc:
			if self._token is token:
				self._token = None
			raise PermissionDenied(f"microphone unavailable: {exc}") from exc
		if self._token is not token:
			_close_stream(stream)
			raise PermissionDenied("microphone open was superseded")
		self._stream = stream

	def pause(self) -> None:
		if self._stream is not None:
			self._stream.stop()

	def resume(self) -> None:
		if self._stream is not None:
			self._stream.start()

	def close(self) -> None:
		self._token = None
		stream, self._stream = self._stream, None
		if stream is not None:
			_close_stream(stream)


def _close_stream(stream) -> None:
	try:
		stream.stop()
	finally:
		stream.close()


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class SoundHandle:
	"""One sounding source. `wait()` returns when it ends or is stopped."""

	def __init__(self, duration_seconds: float, stop: Callable[[], None]) -> None:
		self.duration_seconds = duration_seconds
		self._stop = stop
		self._stopped = asyncio.Event()

	def stop(self) -> None:
		if self._stopped.is_set():
			return
		self._stopped.set()
		self._stop()

	async def wait(self) -> None:
		try:
			await asyncio.wait_for(self._stopped.wait(), timeout=self.duration_seconds)
		except asyncio.TimeoutError:
			pass


class SoundDeviceOutput:
	def play(self, audio: DecodedAudio) -> SoundHandle:
		import sounddevice as sd
		sd.play(audio.samples, samplerate=audio.sample_rate)
		return SoundHandle(audio.duration_seconds, stop=sd.stop)


class NativeSpeaker:
	"""Low-fidelity on-device speech (pyttsx3). Fire-and-forget, cancelable."""

	def __init__(self, rate: int = 160) -> None:
		self.rate = rate
		self._engine = None

	async def speak(self, text: str) -> None:
		await asyncio.to_thread(self._say, text)

	def _say(self, text: str) -> None:
		import pyttsx3
		engine = pyttsx3.init()
		engine.setProperty("rate", self.rate)
		self._engine = engine
		try:
			engine.say(text)
			engine.runAndWait()
		finally:
			self._engine = None

	def cancel(self) -> None:
		engine: Optional[object] = self._engine
		if engine is None:
			return
		try:
			engine.stop()
		except RuntimeError:
			logger.debug("native speaker already stopped")
