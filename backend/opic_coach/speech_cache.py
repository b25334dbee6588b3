"""
Content-addressed cache of synthesized speech.

Keys are the flattened text of what was spoken, so a model answer replayed from
the live result and from the history list shares one entry. Values are raw
16-bit mono PCM exactly as the synthesis backend returned it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Dict, Optional

from .errors import BackendRejected
from .parts import flatten_text

logger = logging.getLogger(__name__)


def speech_key(text: str) -> str:
	return flatten_text(text)


class SpeechCache:
	def __init__(self, max_entries: int = 0) -> None:
		# 0 = unbounded
		self.max_entries = max_entries
		self._entries: "OrderedDict[str, bytes]" = OrderedDict()
		self._pending: Dict[str, "asyncio.Future[bytes]"] = {}

	def get(self, key: str) -> Optional[bytes]:
		if key not in self._entries:
			return None
		# Move to end to keep LRU ordering.
		audio = self._entries.pop(key)
		self._entries[key] = audio
		return audio

	def put(self, key: str, audio: bytes) -> None:
		if not key:
			return
		self._entries.pop(key, None)
		self._entries[key] = audio
		if self.max_entries and len(self._entries) > self.max_entries:
			evicted, _ = self._entries.popitem(last=False)
			logger.debug("speech cache evicted %r", evicted[:40])

	def pending(self, key: str) -> bool:
		return key in self._pending

	async def get_or_create(self, key: str, factory: Callable[[], Awaitable[bytes]]) -> bytes:
		"""Return cached audio, joining a running producer for the same key if any."""
		cached = self.get(key)
		if cached is not None:
			return cached
		running = self._pending.get(key)
		if running is not None:
			try:
				return await asyncio.shield(running)
			except asyncio.CancelledError:
				if running.cancelled():
					raise BackendRejected("speech synthesis for this text was cancelled") from None
				raise
		future: "asyncio.Future[bytes]" = asyncio.get_running_loop().create_future()
		self._pending[key] = future
		try:
			audio = await factory()
		except asyncio.CancelledError:
			future.cancel()
			raise
		except Exception as exc:
			future.set_exception(exc)
			# Mark retrieved; waiters re-raise it and so does the creator
			future.exception()
			raise
		else:
			self.put(key, audio)
			future.set_result(audio)
			return audio
		finally:
			self._pending.pop(key, None)

	def clear(self) -> None:
		self._entries.clear()

	def __contains__(self, key: object) -> bool:
		return key in self._entries

	def __len__(self) -> int:
		return len(self._entries)
