"""
Process-wide resources of the study station.

StudioRuntime owns the speech cache, the synthesis marker, the active playback
source and the recorder, and hands them to the components that need them. The
FastAPI app keeps one instance on `app.state.runtime`.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from .audio import NativeSpeaker, SoundDeviceCapture, SoundDeviceOutput
from .blob_store import FolderBlobStore
from .db import SessionLocal
from .grading import GradingClient
from .log_store import ProgressStore, StudyLogStore
from .orchestrator import SessionOrchestrator
from .playback import PlaybackController
from .recording import RecordingController
from .settings import Settings, settings as default_settings
from .speech_cache import SpeechCache
from .synthesis import InFlightMarker, SpeechSynthesizer, SynthesisJob

logger = logging.getLogger(__name__)


class StudioRuntime:
	def __init__(
		self,
		*,
		session_factory: sessionmaker,
		blob_store,
		grading: GradingClient,
		synthesizer,
		capture,
		output,
		native_speaker,
		config: Optional[Settings] = None,
	) -> None:
		config = config or default_settings
		self.config = config
		self.session_factory = session_factory
		self.blob_store = blob_store
		self.log_store = StudyLogStore(session_factory)
		self.progress_store = ProgressStore(session_factory)
		self.cache = SpeechCache(max_entries=config.speech_cache_max_entries)
		self.marker = InFlightMarker()
		self.synthesis = SynthesisJob(
			synthesizer,
			self.cache,
			self.marker,
			blob_store,
			self.log_store,
			container=config.blob_container,
			timeout=config.synthesis_timeout_seconds,
		)
		self.orchestrator = SessionOrchestrator(
			grading,
			blob_store,
			self.log_store,
			self.progress_store,
			self.synthesis,
			container=config.blob_container,
		)
		self.synthesis.on_complete = self.orchestrator.on_model_audio_ready
		self.playback = PlaybackController(
			self.cache,
			self.marker,
			synthesizer,
			blob_store,
			output,
			native_speaker,
			sample_rate=config.tts_sample_rate,
			native_question_voice=config.native_question_voice,
			wait_timeout=config.synthesis_wait_seconds,
			asset_timeout=config.asset_timeout_seconds,
		)
		self.recorder = RecordingController(
			capture,
			sample_rate=config.capture_sample_rate,
			open_timeout=config.capture_timeout_seconds,
			on_start=self.orchestrator.reset_transient_state,
		)

	async def reset(self) -> None:
		"""Drop per-user audio state: stop sound, cancel a take, empty the cache."""
		await self.recorder.cancel()
		await self.playback.teardown()
		self.cache.clear()
		self.orchestrator.reset_transient_state()
		logger.info("runtime reset: speech cache cleared")

	async def teardown(self) -> None:
		await self.reset()
		await self.synthesis.drain()


def build_runtime(config: Optional[Settings] = None) -> StudioRuntime:
	config = config or default_settings
	return StudioRuntime(
		session_factory=SessionLocal,
		blob_store=FolderBlobStore(config.blob_root),
		grading=GradingClient(timeout=config.grading_timeout_seconds),
		synthesizer=SpeechSynthesizer(timeout=config.synthesis_timeout_seconds),
		capture=SoundDeviceCapture(sample_rate=config.capture_sample_rate, gain=config.capture_gain),
		output=SoundDeviceOutput(),
		native_speaker=NativeSpeaker(rate=config.native_speech_rate),
		config=config,
	)


def get_runtime(request: Request) -> StudioRuntime:
	return request.app.state.runtime
