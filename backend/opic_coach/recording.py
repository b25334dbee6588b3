"""
Recording state machine.

    Idle -> Recording -> (Paused <-> Recording) -> Finalizing -> Completed | Cancelled

The capture device is anything with `async open(on_chunk)`, `pause()`,
`resume()` and `close()`; `SoundDeviceCapture` is the real one.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from .audio import AudioClip, pcm16_to_wav
from .errors import PermissionDenied, RecordingInProgress

logger = logging.getLogger(__name__)


class RecordingState(str, Enum):
	IDLE = "idle"
	RECORDING = "recording"
	PAUSED = "paused"
	FINALIZING = "finalizing"
	COMPLETED = "completed"
	CANCELLED = "cancelled"


_ACTIVE = (RecordingState.RECORDING, RecordingState.PAUSED, RecordingState.FINALIZING)


@dataclass
class RecordingSession:
	context: Any = None
	chunks: List[bytes] = field(default_factory=list)
	cancelled: bool = False
	started_at: float = field(default_factory=time.monotonic)


class RecordingController:
	def __init__(
		self,
		device,
		*,
		sample_rate: int = 16000,
		open_timeout: float = 5.0,
		on_start: Optional[Callable[[], None]] = None,
	) -> None:
		self.device = device
		self.sample_rate = sample_rate
		self.open_timeout = open_timeout
		self.on_start = on_start
		self.state = RecordingState.IDLE
		self._session: Optional[RecordingSession] = None

	@property
	def session(self) -> Optional[RecordingSession]:
		return self._session

	@property
	def context(self) -> Any:
		return self._session.context if self._session else None

	async def start(self, context: Any = None) -> None:
		if self.state in _ACTIVE:
			raise RecordingInProgress(f"recorder is {self.state.value}")
		session = RecordingSession(context=context)
		self._session = session
		self.state = RecordingState.RECORDING
		try:
			await asyncio.wait_for(self.device.open(self._on_chunk), timeout=self.open_timeout)
		except (PermissionDenied, asyncio.TimeoutError, OSError) as exc:
			self._session = None
			self.state = RecordingState.IDLE
			logger.warning("microphone could not be opened: %s", exc)
			if isinstance(exc, PermissionDenied):
				raise
			raise PermissionDenied(f"microphone unavailable: {exc}") from exc
		if self.on_start is not None:
			self.on_start()

	def _on_chunk(self, chunk: bytes) -> None:
		session = self._session
		if session is None or self.state is not RecordingState.RECORDING:
			return
		session.chunks.append(chunk)

	def pause(self) -> None:
		if self.state is not RecordingState.RECORDING:
			return
		self.device.pause()
		self.state = RecordingState.PAUSED

	def resume(self) -> None:
		if self.state is not RecordingState.PAUSED:
			return
		self.device.resume()
		self.state = RecordingState.RECORDING

	async def stop(self) -> Optional[AudioClip]:
		"""Finalize the take. Returns None when it was cancelled or nothing was recording."""
		if self.state not in (RecordingState.RECORDING, RecordingState.PAUSED):
			return None
		session = self._session
		self.state = RecordingState.FINALIZING
		try:
			self.device.close()
		except Exception:
			logger.exception("failed to release capture device")
		if session.cancelled:
			session.chunks.clear()
			self._session = None
			self.state = RecordingState.CANCELLED
			return None
		pcm = b"".join(session.chunks)
		session.chunks.clear()
		clip = AudioClip(
			data=pcm16_to_wav(pcm, self.sample_rate),
			mime_type="audio/wav",
			sample_rate=self.sample_rate,
			duration_seconds=len(pcm) / 2 / float(self.sample_rate),
		)
		self.state = RecordingState.COMPLETED
		logger.info("recording finished: %.1fs", clip.duration_seconds)
		return clip

	async def cancel(self) -> None:
		if self._session is None or self.state not in (RecordingState.RECORDING, RecordingState.PAUSED):
			return
		self._session.cancelled = True
		await self.stop()

	def snapshot(self) -> dict:
		session = self._session
		return {
			"state": self.state.value,
			"elapsed_seconds": round(time.monotonic() - session.started_at, 1) if session and self.state in _ACTIVE else 0.0,
			"chunks": len(session.chunks) if session else 0,
		}
