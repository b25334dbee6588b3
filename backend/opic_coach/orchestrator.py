"""
Study session orchestration.

`analyze` turns one finished recording into a persisted StudySession:
upload raw clip -> grade -> append log -> update unit progress -> schedule the
model-audio SynthesisJob. Only one analysis runs at a time; a second request
while busy is rejected, never queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .audio import AudioClip
from .blob_store import raw_asset_name
from .errors import AnalysisFailed, AnalysisInProgress, AssetIOFailure
from .grading import GradingClient, StyleDirection, level_rank
from .log_store import (
	EMPTY_MARK,
	STATUS_COMPLETE,
	STATUS_INCOMPLETE,
	ProgressStore,
	StudyLogStore,
	StudySession,
	UnitStatus,
	new_session_id,
	practice_stamp,
)

logger = logging.getLogger(__name__)

ANALYSIS_FAILED_NOTICE = "Analysis failed. Please record your answer again."


@dataclass(frozen=True)
class AnalysisContext:
	"""What the learner was answering when the recording started."""
	unit_id: str
	question: str
	unit_label: str = ""
	question_type: str = "General"
	keywords: str = ""
	style: Optional[StyleDirection] = None


class SessionOrchestrator:
	def __init__(
		self,
		grading: GradingClient,
		blob_store,
		log_store: StudyLogStore,
		progress_store: ProgressStore,
		synthesis_job,
		*,
		container: str = "default",
	) -> None:
		self.grading = grading
		self.blob_store = blob_store
		self.log_store = log_store
		self.progress_store = progress_store
		self.synthesis_job = synthesis_job
		self.container = container
		self.busy = False
		self.step = ""
		self.notice: Optional[str] = None
		self.last_result: Optional[StudySession] = None
		self.show_translation = False
		self.units: Dict[str, UnitStatus] = {}

	# ------------------------------------------------------------------
	# UI-visible state
	# ------------------------------------------------------------------

	def reload_units(self) -> List[UnitStatus]:
		units = self.progress_store.list_all()
		self.units = {u.unit_id: u for u in units}
		return units

	def reset_transient_state(self) -> None:
		self.last_result = None
		self.show_translation = False
		self.notice = None

	def toggle_translation(self) -> bool:
		self.show_translation = not self.show_translation
		return self.show_translation

	def status(self) -> Dict[str, Any]:
		marker = self.synthesis_job.marker
		return {
			"busy": self.busy,
			"step": self.step,
			"notice": self.notice,
			"last_session_id": self.last_result.session_id if self.last_result else None,
			"show_translation": self.show_translation,
			"synthesizing": marker.session_id,
		}

	def on_model_audio_ready(self, session_id: str, ref: str) -> None:
		if self.last_result is not None and self.last_result.session_id == session_id:
			self.last_result = self.last_result.with_audio_link(ref)

	# ------------------------------------------------------------------
	# Grading flow
	# ------------------------------------------------------------------

	async def analyze(self, clip: AudioClip, context: AnalysisContext) -> StudySession:
		if self.busy:
			raise AnalysisInProgress("an answer is already being analyzed")
		self.busy = True
		self.notice = None
		now = datetime.now()
		session_id = new_session_id()
		step = "upload"
		try:
			self.step = "Uploading your recording..."
			raw_ref = await self.blob_store.upload(clip.data, raw_asset_name(session_id), self.container)
			if not raw_ref:
				raise AssetIOFailure(f"raw recording upload failed for {session_id}")

			step = "grading"
			self.step = "Analyzing your answer..."
			result = await self.grading.grade(clip, context.question, context.keywords, context.style)

			step = "persist"
			self.step = "Saving your study log..."
			session = StudySession(
				session_id=session_id,
				created_at=now,
				unit_id=context.unit_id,
				unit_label=context.unit_label,
				question_type=context.question_type or "General",
				question=context.question,
				keywords=context.keywords,
				transcript=result.transcript,
				raw_audio_link=raw_ref,
				grade=result.predicted_level,
				correction=result.correction,
				translation=result.translation,
				feedback=result.feedback,
				style=context.style.value if context.style else None,
			)
			self.log_store.append(session)

			step = "progress"
			previous = self.progress_store.get(context.unit_id)
			unit = self.progress_store.set_status(
				context.unit_id, STATUS_COMPLETE, result.predicted_level, practice_stamp(now)
			)
			self.units[unit.unit_id] = unit
		except Exception as exc:
			logger.exception("analysis of %s failed during %s", session_id, step)
			if step == "progress":
				# the row was written but will never get model audio
				self.log_store.delete(session_id)
			self.notice = ANALYSIS_FAILED_NOTICE
			raise AnalysisFailed(ANALYSIS_FAILED_NOTICE, session_id=session_id, step=step) from exc
		finally:
			self.busy = False
			self.step = ""

		if previous is not None and level_rank(session.grade) > level_rank(previous.grade):
			logger.info("unit %s improved from %s to %s", context.unit_id, previous.grade, session.grade)
		self.last_result = session
		summary = self.progress_store.summary()
		logger.info(
			"session %s graded %s; progress %d/%d (%d%%)",
			session_id, session.grade, summary.completed, summary.total, summary.percent,
		)
		self.synthesis_job.schedule(session)
		return session

	# ------------------------------------------------------------------
	# History
	# ------------------------------------------------------------------

	def history(self, unit_id: Optional[str] = None) -> List[StudySession]:
		if unit_id:
			return self.log_store.list_for_unit(unit_id)
		return self.log_store.list_all()

	def get_session(self, session_id: str) -> Optional[StudySession]:
		return self.log_store.find(session_id)

	async def delete_session(self, session_id: str) -> bool:
		marker = self.synthesis_job.marker
		if marker.session_id == session_id and not await marker.wait(self.synthesis_job.timeout):
			logger.warning("model audio for %s still in flight while deleting", session_id)
		entry = self.log_store.find(session_id)
		if entry is None:
			return False
		refs = [ref for ref in (entry.audio_link, entry.raw_audio_link) if ref]
		outcomes = await asyncio.gather(*(self.blob_store.delete(ref) for ref in refs), return_exceptions=True)
		for ref, outcome in zip(refs, outcomes):
			if outcome is not True:
				logger.warning("asset %s of %s not deleted: %s", ref, session_id, outcome)
		if not self.log_store.delete(session_id):
			return False
		if self.last_result is not None and self.last_result.session_id == session_id:
			self.last_result = None
		if not self.log_store.list_for_unit(entry.unit_id):
			unit = self.progress_store.set_status(entry.unit_id, STATUS_INCOMPLETE, EMPTY_MARK, EMPTY_MARK)
			self.units[unit.unit_id] = unit
		summary = self.progress_store.summary()
		logger.info("deleted session %s; progress %d/%d", session_id, summary.completed, summary.total)
		return True
