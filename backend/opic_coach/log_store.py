"""
Persistence boundary for study sessions and unit progress.

StudySession is the in-memory record; StudyLog rows hold the same data with the
three-part answers flattened to a delimited string. Each store call opens its
own SQLAlchemy session so the background synthesis job can write safely.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .models import StudyLog, UnitProgress
from .parts import ThreePart

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "complete"
STATUS_INCOMPLETE = "incomplete"
EMPTY_MARK = "-"


def new_session_id() -> str:
	return f"SESS_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5].upper()}"


def practice_stamp(when: datetime) -> str:
	return when.strftime("%Y-%m-%d %H:%M")


@dataclass(frozen=True)
class StudySession:
	session_id: str
	created_at: datetime
	unit_id: str
	unit_label: str
	question: str
	keywords: str
	transcript: str
	raw_audio_link: str
	grade: str
	correction: ThreePart
	translation: ThreePart
	feedback: str
	question_type: str = "General"
	style: Optional[str] = None
	audio_link: str = ""

	def with_audio_link(self, ref: str) -> "StudySession":
		return replace(self, audio_link=ref)

	def to_row(self) -> StudyLog:
		return StudyLog(
			session_id=self.session_id,
			created_at=self.created_at,
			unit_id=self.unit_id,
			unit_label=self.unit_label,
			question_type=self.question_type,
			question=self.question,
			keywords=self.keywords,
			transcript=self.transcript,
			raw_audio_link=self.raw_audio_link,
			grade=self.grade,
			correction=self.correction.join(),
			translation=self.translation.join(),
			feedback=self.feedback,
			style=self.style,
			audio_link=self.audio_link,
		)

	@classmethod
	def from_row(cls, row: StudyLog) -> "StudySession":
		return cls(
			session_id=row.session_id,
			created_at=row.created_at,
			unit_id=row.unit_id,
			unit_label=row.unit_label or "",
			question_type=row.question_type or "",
			question=row.question or "",
			keywords=row.keywords or "",
			transcript=row.transcript or "",
			raw_audio_link=row.raw_audio_link or "",
			grade=row.grade or "",
			correction=ThreePart.parse(row.correction or ""),
			translation=ThreePart.parse(row.translation or ""),
			feedback=row.feedback or "",
			style=row.style,
			audio_link=row.audio_link or "",
		)

	def as_dict(self) -> Dict[str, Any]:
		return {
			"session_id": self.session_id,
			"date": practice_stamp(self.created_at),
			"unit_id": self.unit_id,
			"unit": self.unit_label,
			"type": self.question_type,
			"question": self.question,
			"keywords": self.keywords,
			"transcript": self.transcript,
			"raw_audio_link": self.raw_audio_link,
			"grade": self.grade,
			"correction": self.correction.as_dict(),
			"translation": self.translation.as_dict(),
			"correction_text": self.correction.flatten(),
			"feedback": self.feedback,
			"style": self.style,
			"audio_link": self.audio_link,
		}


_UPDATABLE = {"audio_link", "raw_audio_link", "feedback", "grade"}


class StudyLogStore:
	def __init__(self, session_factory: Callable[[], Session]) -> None:
		self._session_factory = session_factory

	def append(self, session: StudySession) -> None:
		with self._session_factory() as db:
			db.add(session.to_row())
			db.commit()

	def find(self, session_id: str) -> Optional[StudySession]:
		with self._session_factory() as db:
			row = db.get(StudyLog, session_id)
			return StudySession.from_row(row) if row is not None else None

	def update(self, session_id: str, **fields: str) -> bool:
		unknown = set(fields) - _UPDATABLE
		if unknown:
			raise ValueError(f"fields not updatable: {sorted(unknown)}")
		with self._session_factory() as db:
			row = db.get(StudyLog, session_id)
			if row is None:
				logger.warning("study log %s not found; %s not updated", session_id, ", ".join(fields))
				return False
			for key, value in fields.items():
				setattr(row, key, value)
			db.commit()
			return True

	def delete(self, session_id: str) -> bool:
		with self._session_factory() as db:
			row = db.get(StudyLog, session_id)
			if row is None:
				return False
			db.delete(row)
			db.commit()
			return True

	def list_all(self) -> List[StudySession]:
		with self._session_factory() as db:
			rows = db.execute(select(StudyLog).order_by(StudyLog.created_at.desc())).scalars().all()
			return [StudySession.from_row(r) for r in rows]

	def list_for_unit(self, unit_id: str) -> List[StudySession]:
		with self._session_factory() as db:
			rows = db.execute(
				select(StudyLog).where(StudyLog.unit_id == unit_id).order_by(StudyLog.created_at.desc())
			).scalars().all()
			return [StudySession.from_row(r) for r in rows]


@dataclass
class UnitStatus:
	unit_id: str
	topic: str = ""
	essence: str = ""
	status: str = STATUS_INCOMPLETE
	grade: str = EMPTY_MARK
	last_practice: str = EMPTY_MARK

	@classmethod
	def from_row(cls, row: UnitProgress) -> "UnitStatus":
		return cls(
			unit_id=row.unit_id,
			topic=row.topic or "",
			essence=row.essence or "",
			status=row.status or STATUS_INCOMPLETE,
			grade=row.grade or EMPTY_MARK,
			last_practice=row.last_practice or EMPTY_MARK,
		)


@dataclass(frozen=True)
class ProgressSummary:
	completed: int
	total: int
	percent: int = field(default=0)


class ProgressStore:
	def __init__(self, session_factory: Callable[[], Session]) -> None:
		self._session_factory = session_factory

	def get(self, unit_id: str) -> Optional[UnitStatus]:
		with self._session_factory() as db:
			row = db.get(UnitProgress, unit_id)
			return UnitStatus.from_row(row) if row is not None else None

	def list_all(self) -> List[UnitStatus]:
		with self._session_factory() as db:
			rows = db.execute(select(UnitProgress).order_by(UnitProgress.unit_id)).scalars().all()
			return [UnitStatus.from_row(r) for r in rows]

	def upsert(self, unit_id: str, topic: str = "", essence: str = "") -> UnitStatus:
		"""Register a unit; existing progress is kept."""
		with self._session_factory() as db:
			row = db.get(UnitProgress, unit_id)
			if row is None:
				row = UnitProgress(unit_id=unit_id, status=STATUS_INCOMPLETE, grade=EMPTY_MARK, last_practice=EMPTY_MARK)
				db.add(row)
			if topic:
				row.topic = topic
			if essence:
				row.essence = essence
			db.commit()
			return UnitStatus.from_row(row)

	def set_status(self, unit_id: str, status: str, grade: str = EMPTY_MARK, last_practice: str = EMPTY_MARK) -> UnitStatus:
		with self._session_factory() as db:
			row = db.get(UnitProgress, unit_id)
			if row is None:
				row = UnitProgress(unit_id=unit_id)
				db.add(row)
			row.status = status
			row.grade = grade
			row.last_practice = last_practice
			db.commit()
			return UnitStatus.from_row(row)

	def summary(self) -> ProgressSummary:
		units = self.list_all()
		if not units:
			return ProgressSummary(completed=0, total=0, percent=0)
		completed = sum(1 for u in units if u.status == STATUS_COMPLETE)
		return ProgressSummary(completed=completed, total=len(units), percent=round(completed * 100 / len(units)))
