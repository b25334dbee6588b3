from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./opic_coach.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind=None) -> None:
	bind = bind or engine
	inspector = inspect(bind)
	tables = set(inspector.get_table_names())
	if "study_log" in tables:
		cols = {c["name"] for c in inspector.get_columns("study_log")}
		with bind.begin() as conn:
			if "audio_link" not in cols:
				conn.exec_driver_sql("ALTER TABLE study_log ADD COLUMN audio_link VARCHAR(512) DEFAULT '' NOT NULL")
			if "style" not in cols:
				conn.exec_driver_sql("ALTER TABLE study_log ADD COLUMN style VARCHAR(16)")
