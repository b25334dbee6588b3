from __future__ import annotations

import csv
import io
from dataclasses import asdict
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from ..log_store import practice_stamp
from ..runtime import StudioRuntime, get_runtime

router = APIRouter(prefix="/sessions", tags=["sessions"])

CSV_HEADERS = [
	"Session ID",
	"Date",
	"Unit",
	"Type",
	"Question",
	"Keywords",
	"Transcript",
	"Recording Link",
	"Grade",
	"Model Answer",
	"Translation",
	"Feedback",
	"Model Audio Link",
]


@router.get("")
async def list_sessions(unit_id: Optional[str] = None, rt: StudioRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
	return [s.as_dict() for s in rt.orchestrator.history(unit_id)]


@router.get("/status")
async def status(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	return rt.orchestrator.status()


@router.post("/translation/toggle")
async def toggle_translation(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, bool]:
	return {"show_translation": rt.orchestrator.toggle_translation()}


@router.get("/export.csv")
async def export_csv(rt: StudioRuntime = Depends(get_runtime)) -> Response:
	sessions = rt.orchestrator.history()
	if not sessions:
		raise HTTPException(status_code=404, detail="No study logs to export")
	buf = io.StringIO()
	writer = csv.writer(buf, lineterminator="\n")
	writer.writerow(CSV_HEADERS)
	for s in sessions:
		writer.writerow([
			s.session_id,
			practice_stamp(s.created_at),
			s.unit_label or s.unit_id,
			s.question_type,
			s.question,
			s.keywords,
			s.transcript,
			s.raw_audio_link,
			s.grade,
			s.correction.flatten(),
			s.translation.flatten(),
			s.feedback,
			s.audio_link,
		])
	# UTF-8 BOM for spreadsheet apps
	body = "\ufeff" + buf.getvalue()
	filename = f"OPIcCoach_StudyLog_{date.today().isoformat()}.csv"
	return Response(
		content=body.encode("utf-8"),
		media_type="text/csv; charset=utf-8",
		headers={"Content-Disposition": f'attachment; filename="{filename}"'},
	)


@router.get("/{session_id}")
async def get_session(session_id: str, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	session = rt.orchestrator.get_session(session_id)
	if session is None:
		raise HTTPException(status_code=404, detail="Session not found")
	data = session.as_dict()
	data["show_translation"] = rt.orchestrator.show_translation
	return data


@router.delete("/{session_id}")
async def delete_session(session_id: str, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	if not await rt.orchestrator.delete_session(session_id):
		raise HTTPException(status_code=404, detail="Session not found")
	return {"deleted": session_id, "progress": asdict(rt.progress_store.summary())}
