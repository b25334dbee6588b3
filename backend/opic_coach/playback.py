"""
Single-active-source playback.

Every request goes through `PlaybackController.play`, which keeps at most one
source sounding. Resolution order for a request:

    same id as the current source  -> stop (toggle)
    spoken question                -> on-device voice
    speech cache hit               -> raw PCM
    model answer being synthesized -> wait for the job, then the cache
    remote asset                   -> raw PCM or container decode
    text only                      -> synthesize on demand

`status` is what a client polls to render "loading" / "playing" for an id.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .audio import DecodedAudio, decode_container, decode_raw_pcm
from .blob_store import is_model_asset
from .errors import BackendRejected, CoachError
from .speech_cache import SpeechCache, speech_key
from .synthesis import InFlightMarker

logger = logging.getLogger(__name__)


class PlaybackKind(str, Enum):
	QUESTION = "question"
	MODEL_ANSWER = "model_answer"
	RECORDING = "recording"


@dataclass(frozen=True)
class PlaybackStatus:
	playback_id: str
	state: str  # "loading" | "playing"


class PlaybackController:
	def __init__(
		self,
		cache: SpeechCache,
		marker: InFlightMarker,
		synthesizer,
		blob_store,
		output,
		native_speaker,
		*,
		sample_rate: int = 24000,
		native_question_voice: bool = True,
		wait_timeout: float = 120.0,
		asset_timeout: float = 30.0,
	) -> None:
		self.cache = cache
		self.marker = marker
		self.synthesizer = synthesizer
		self.blob_store = blob_store
		self.output = output
		self.native_speaker = native_speaker
		self.sample_rate = sample_rate
		self.native_question_voice = native_question_voice
		self.wait_timeout = wait_timeout
		self.asset_timeout = asset_timeout
		self._status: Optional[PlaybackStatus] = None
		self._handle = None
		self._native_task: Optional[asyncio.Task] = None
		self._watch_task: Optional[asyncio.Task] = None
		# Bumped on every stop; work started under an older value never sounds
		self._generation = 0

	@property
	def status(self) -> Optional[PlaybackStatus]:
		return self._status

	@property
	def active(self) -> bool:
		return self._handle is not None or self._native_task is not None

	def stop(self) -> None:
		self._generation += 1
		handle, self._handle = self._handle, None
		if handle is not None:
			handle.stop()
		if self._native_task is not None:
			self.native_speaker.cancel()
			self._native_task = None
		self._status = None

	async def play(
		self,
		text: str,
		playback_id: str,
		asset_ref: Optional[str] = None,
		kind: PlaybackKind = PlaybackKind.MODEL_ANSWER,
	) -> Optional[PlaybackStatus]:
		if self._status is not None and self._status.playback_id == playback_id:
			self.stop()
			return None
		self.stop()
		generation = self._generation
		key = speech_key(text)

		if kind is PlaybackKind.QUESTION and key and self.native_question_voice:
			self._status = PlaybackStatus(playback_id, "playing")
			self._native_task = asyncio.create_task(self._speak_native(key, generation))
			return self._status

		try:
			audio = await self._resolve(key, playback_id, asset_ref, kind, generation)
			if audio is None or generation != self._generation:
				return self._status
			self._start(audio, playback_id, generation)
		except Exception:
			logger.exception("playback of %s failed (asset=%s)", playback_id, asset_ref or "-")
			if generation == self._generation:
				self._status = None
			return None
		return self._status

	async def _resolve(
		self,
		key: str,
		playback_id: str,
		asset_ref: Optional[str],
		kind: PlaybackKind,
		generation: int,
	) -> Optional[DecodedAudio]:
		cached = self.cache.get(key) if key else None
		if cached is not None:
			return decode_raw_pcm(cached, self.sample_rate)

		self._status = PlaybackStatus(playback_id, "loading")

		if kind is PlaybackKind.MODEL_ANSWER and not asset_ref and key and self.marker.key == key:
			finished = await self.marker.wait(self.wait_timeout)
			if generation != self._generation:
				return None
			cached = self.cache.get(key)
			if cached is not None:
				return decode_raw_pcm(cached, self.sample_rate)
			if not finished:
				raise BackendRejected(f"model audio still not ready after {self.wait_timeout:.0f}s")
			logger.info("background synthesis produced nothing for %s; synthesizing on demand", playback_id)

		if asset_ref:
			data = await asyncio.wait_for(self.blob_store.fetch(asset_ref), timeout=self.asset_timeout)
			if generation != self._generation:
				return None
			if kind is PlaybackKind.MODEL_ANSWER or is_model_asset(asset_ref):
				audio = decode_raw_pcm(data, self.sample_rate)
				if key:
					self.cache.put(key, data)
				return audio
			return decode_container(data)

		if not key:
			raise CoachError("nothing to play: empty text and no asset")
		data = await self.cache.get_or_create(key, lambda: self.synthesizer.synthesize(key))
		if generation != self._generation:
			return None
		return decode_raw_pcm(data, self.sample_rate)

	def _start(self, audio: DecodedAudio, playback_id: str, generation: int) -> None:
		handle = self.output.play(audio)
		self._handle = handle
		self._status = PlaybackStatus(playback_id, "playing")
		self._watch_task = asyncio.create_task(self._watch(handle, generation))

	async def _watch(self, handle, generation: int) -> None:
		await handle.wait()
		if generation == self._generation and self._handle is handle:
			self._handle = None
			self._status = None

	async def _speak_native(self, text: str, generation: int) -> None:
		try:
			await self.native_speaker.speak(text)
		except Exception:
			logger.exception("on-device speech failed")
		finally:
			if generation == self._generation:
				self._native_task = None
				self._status = None

	async def teardown(self) -> None:
		self.stop()
		watch, self._watch_task = self._watch_task, None
		if watch is not None and not watch.done():
			watch.cancel()
			await asyncio.gather(watch, return_exceptions=True)
