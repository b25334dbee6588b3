from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from .db import Base


class StudyLog(Base):
	__tablename__ = "study_log"
	session_id = Column(String(64), primary_key=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	unit_id = Column(String(64), index=True, nullable=False)
	unit_label = Column(String(256), default="", nullable=False)
	question_type = Column(String(128), default="", nullable=False)
	question = Column(Text, default="", nullable=False)
	keywords = Column(Text, default="", nullable=False)
	transcript = Column(Text, default="", nullable=False)
	raw_audio_link = Column(String(512), default="", nullable=False)
	grade = Column(String(8), default="", nullable=False)
	# Three-part texts joined with parts.PART_DELIMITER
	correction = Column(Text, default="", nullable=False)
	translation = Column(Text, default="", nullable=False)
	feedback = Column(Text, default="", nullable=False)
	style = Column(String(16), nullable=True)
	# Filled in later by the background synthesis job
	audio_link = Column(String(512), default="", nullable=False)


class UnitProgress(Base):
	__tablename__ = "unit_progress"
	unit_id = Column(String(64), primary_key=True)
	topic = Column(String(256), default="", nullable=False)
	essence = Column(String(256), default="", nullable=False)
	status = Column(String(16), default="incomplete", nullable=False)
	grade = Column(String(8), default="-", nullable=False)
	last_practice = Column(String(32), default="-", nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class VocabularyEntry(Base):
	__tablename__ = "vocabulary_bank"
	id = Column(String(32), primary_key=True)
	expression = Column(String(256), nullable=False)
	meaning = Column(Text, default="", nullable=False)
	usage_example = Column(Text, default="", nullable=False)
	unit_source = Column(String(256), default="General", nullable=False)
	added_date = Column(String(32), default="", nullable=False)
	status = Column(String(16), default="Learning", nullable=False)
