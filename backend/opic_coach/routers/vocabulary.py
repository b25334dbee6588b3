from __future__ import annotations

from datetime import date
from typing import Any, Callable, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select

from ..errors import BackendRejected
from ..gemini_client import GeminiClient
from ..models import VocabularyEntry
from ..runtime import StudioRuntime, get_runtime
from ..settings import settings
from ..vocabulary import extract_key_expressions, new_vocabulary_id


router = APIRouter(prefix="/vocabulary", tags=["vocabulary"])


class ExpressionOut(BaseModel):
	expression: str
	meaning: str
	usage_example: str


class EntryRequest(BaseModel):
	expression: str = Field(min_length=1)
	meaning: str = ""
	usage_example: str = ""
	unit_source: str = "General"


class EntryOut(BaseModel):
	id: str
	expression: str
	meaning: str
	usage_example: str
	unit_source: str
	added_date: str
	status: str


def get_client_factory() -> Callable[..., GeminiClient]:
	return GeminiClient


def _entry_out(row: VocabularyEntry) -> EntryOut:
	return EntryOut(
		id=row.id,
		expression=row.expression,
		meaning=row.meaning or "",
		usage_example=row.usage_example or "",
		unit_source=row.unit_source or "General",
		added_date=row.added_date or "",
		status=row.status or "Learning",
	)


@router.post("/extract/{session_id}", response_model=List[ExpressionOut])
async def extract(
	session_id: str,
	rt: StudioRuntime = Depends(get_runtime),
	client_factory: Callable[..., GeminiClient] = Depends(get_client_factory),
):
	"""Pull key expressions out of a session's model answer; nothing is saved."""
	session = rt.orchestrator.get_session(session_id)
	if session is None:
		raise HTTPException(status_code=404, detail="Session not found")
	if not session.correction:
		raise HTTPException(status_code=400, detail="Session has no model answer")
	try:
		items = await extract_key_expressions(session.correction, settings.feedback_language, client_factory)
	except BackendRejected as e:
		raise HTTPException(status_code=502, detail=f"Expression extraction failed: {e}")
	return [ExpressionOut(expression=i.expression, meaning=i.meaning, usage_example=i.usage_example) for i in items]


@router.get("", response_model=List[EntryOut])
async def list_entries(rt: StudioRuntime = Depends(get_runtime)):
	with rt.session_factory() as db:
		rows = db.execute(select(VocabularyEntry).order_by(VocabularyEntry.added_date.desc(), VocabularyEntry.id.desc())).scalars().all()
		return [_entry_out(r) for r in rows]


@router.post("", response_model=EntryOut)
async def add_entry(req: EntryRequest, rt: StudioRuntime = Depends(get_runtime)):
	with rt.session_factory() as db:
		existing = db.execute(
			select(VocabularyEntry).where(VocabularyEntry.expression == req.expression.strip())
		).scalars().first()
		if existing is not None:
			return _entry_out(existing)
		row = VocabularyEntry(
			id=new_vocabulary_id(),
			expression=req.expression.strip(),
			meaning=req.meaning.strip(),
			usage_example=req.usage_example.strip(),
			unit_source=req.unit_source or "General",
			added_date=date.today().isoformat(),
			status="Learning",
		)
		db.add(row)
		db.commit()
		return _entry_out(row)


@router.delete("/{entry_id}")
async def delete_entry(entry_id: str, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	with rt.session_factory() as db:
		row = db.get(VocabularyEntry, entry_id)
		if row is None:
			raise HTTPException(status_code=404, detail="Vocabulary entry not found")
		db.delete(row)
		db.commit()
	return {"deleted": entry_id}
