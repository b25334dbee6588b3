from __future__ import annotations


class CoachError(Exception):
	"""Base class for every failure the study pipeline reports."""


class PermissionDenied(CoachError):
	"""The capture device could not be acquired."""


class RecordingInProgress(CoachError):
	pass


class BackendRejected(CoachError, RuntimeError):
	"""A generative backend call failed or returned a non-conforming payload."""


class AssetIOFailure(CoachError):
	"""Upload, fetch or delete of an audio asset failed."""


class AudioDecodeError(CoachError):
	pass


class AnalysisInProgress(CoachError):
	pass


class AnalysisFailed(CoachError):
	"""Terminal failure of one grading attempt; carries the user-facing notice."""

	def __init__(self, notice: str, *, session_id: str | None = None, step: str | None = None) -> None:
		super().__init__(notice)
		self.notice = notice
		self.session_id = session_id
		self.step = step
