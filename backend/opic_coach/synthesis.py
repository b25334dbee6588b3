"""
Background synthesis of the model-answer audio.

After a study session is persisted, SynthesisJob turns its flattened model
answer into speech, caches the samples, stores them as an asset and writes the
asset reference back to the log row. The InFlightMarker is a single slot: while
a job holds it, playback of the same text waits on the marker's completion
signal instead of asking the backend a second time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .blob_store import model_asset_name
from .errors import AssetIOFailure, BackendRejected
from .gemini_client import GeminiClient
from .log_store import StudyLogStore, StudySession
from .settings import settings
from .speech_cache import SpeechCache, speech_key

logger = logging.getLogger(__name__)


class InFlightMarker:
	def __init__(self) -> None:
		self._session_id: Optional[str] = None
		self._key: Optional[str] = None
		self._done: Optional[asyncio.Event] = None

	@property
	def busy(self) -> bool:
		return self._session_id is not None

	@property
	def session_id(self) -> Optional[str]:
		return self._session_id

	@property
	def key(self) -> Optional[str]:
		return self._key

	def claim(self, session_id: str, key: str) -> bool:
		if self._session_id is not None:
			return False
		self._session_id = session_id
		self._key = key
		self._done = asyncio.Event()
		return True

	def release(self) -> None:
		done = self._done
		self._session_id = None
		self._key = None
		self._done = None
		if done is not None:
			done.set()

	async def wait(self, timeout: Optional[float] = None) -> bool:
		"""Wait for the current holder to finish. False on timeout."""
		done = self._done
		if done is None:
			return True
		try:
			await asyncio.wait_for(done.wait(), timeout=timeout)
		except asyncio.TimeoutError:
			return False
		return True


class SpeechSynthesizer:
	"""Gemini text-to-speech; one client per call."""

	def __init__(self, client_factory: Callable[..., GeminiClient] = GeminiClient, *, timeout: Optional[float] = None) -> None:
		self._client_factory = client_factory
		self.timeout = timeout or settings.synthesis_timeout_seconds

	async def synthesize(self, text: str) -> bytes:
		if not text:
			raise BackendRejected("nothing to synthesize")
		try:
			client = self._client_factory(model=settings.gemini_tts_model, timeout=self.timeout)
		except ValueError as err:
			raise BackendRejected(str(err)) from err
		try:
			audio = await client.synthesize_speech(text)
		finally:
			await client.aclose()
		if len(audio) % 2:
			raise BackendRejected("speech payload is not 16-bit PCM")
		logger.info("synthesized %d bytes of speech for %d chars", len(audio), len(text))
		return audio


class SynthesisJob:
	def __init__(
		self,
		synthesizer,
		cache: SpeechCache,
		marker: InFlightMarker,
		blob_store,
		log_store: StudyLogStore,
		*,
		container: Optional[str] = None,
		timeout: Optional[float] = None,
		on_complete: Optional[Callable[[str, str], None]] = None,
	) -> None:
		self.synthesizer = synthesizer
		self.cache = cache
		self.marker = marker
		self.blob_store = blob_store
		self.log_store = log_store
		self.container = container or settings.blob_container
		self.timeout = timeout or settings.synthesis_timeout_seconds
		self.on_complete = on_complete
		self._task: Optional[asyncio.Task] = None

	def schedule(self, session: StudySession) -> Optional[asyncio.Task]:
		"""Start the job in the background; the caller does not wait for it."""
		task = asyncio.create_task(self.run(session), name=f"synthesis-{session.session_id}")
		self._task = task
		return task

	async def run(self, session: StudySession) -> Optional[str]:
		key = speech_key(session.correction.flatten())
		if not key:
			logger.info("session %s has no model answer to synthesize", session.session_id)
			return None
		if not self.marker.claim(session.session_id, key):
			logger.warning(
				"synthesis for %s skipped: %s still in flight", session.session_id, self.marker.session_id
			)
			return None
		try:
			ref = await asyncio.wait_for(self._produce(session, key), timeout=self.timeout)
		except asyncio.TimeoutError:
			logger.error("model audio synthesis for %s timed out after %.0fs", session.session_id, self.timeout)
			return None
		except Exception:
			logger.exception("model audio synthesis failed for session %s", session.session_id)
			return None
		finally:
			self.marker.release()
		if self.on_complete is not None:
			self.on_complete(session.session_id, ref)
		return ref

	async def _produce(self, session: StudySession, key: str) -> str:
		audio = await self.cache.get_or_create(key, lambda: self.synthesizer.synthesize(key))
		ref = await self.blob_store.upload(audio, model_asset_name(session.session_id), self.container)
		if not ref:
			raise AssetIOFailure(f"upload of model audio for {session.session_id} failed")
		if not self.log_store.update(session.session_id, audio_link=ref):
			await self.blob_store.delete(ref)
			raise AssetIOFailure(f"study log {session.session_id} vanished before its audio was linked")
		logger.info("model audio for %s stored at %s", session.session_id, ref)
		return ref

	async def drain(self) -> None:
		"""Wait for the last scheduled job (used on shutdown and in tests)."""
		task = self._task
		if task is not None and not task.done():
			await asyncio.gather(task, return_exceptions=True)
