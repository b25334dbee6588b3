from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Optional

from .errors import AssetIOFailure

logger = logging.getLogger(__name__)

RAW_PREFIX = "USER_RAW_"
MODEL_PREFIX = "AL_MODEL_"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")


def raw_asset_name(session_id: str) -> str:
	return f"{RAW_PREFIX}{session_id}.wav"


def model_asset_name(session_id: str) -> str:
	return f"{MODEL_PREFIX}{session_id}.pcm"


def is_model_asset(ref: Optional[str]) -> bool:
	"""Model-answer assets hold raw PCM; everything else is a container file."""
	if not ref:
		return False
	name = PurePosixPath(ref).name
	return name.startswith(MODEL_PREFIX) or name.endswith(".pcm")


class FolderBlobStore:
	"""Folder-oriented asset storage. A ref is `<container>/<name>`."""

	def __init__(self, root: str | Path) -> None:
		self.root = Path(root)

	def _path(self, ref: str) -> Path:
		container, _, name = (ref or "").partition("/")
		if any(not _SAFE_NAME.match(p or "") or p in (".", "..") for p in (container, name)):
			raise AssetIOFailure(f"invalid asset reference {ref!r}")
		return self.root / container / name

	async def upload(self, data: bytes, name: str, container: str) -> Optional[str]:
		ref = f"{container}/{name}"
		try:
			path = self._path(ref)
			path.parent.mkdir(parents=True, exist_ok=True)
			await asyncio.to_thread(path.write_bytes, data)
		except (OSError, AssetIOFailure):
			logger.exception("upload of %s failed", ref)
			return None
		logger.info("stored asset %s (%d bytes)", ref, len(data))
		return ref

	async def fetch(self, ref: str) -> bytes:
		path = self._path(ref)
		try:
			return await asyncio.to_thread(path.read_bytes)
		except OSError as exc:
			raise AssetIOFailure(f"could not read asset {ref}: {exc}") from exc

	async def delete(self, ref: str) -> bool:
		try:
			path = self._path(ref)
			await asyncio.to_thread(path.unlink)
		except FileNotFoundError:
			return False
		except (OSError, AssetIOFailure):
			logger.exception("delete of %s failed", ref)
			return False
		return True
