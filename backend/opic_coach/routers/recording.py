from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..errors import AnalysisFailed, AnalysisInProgress, PermissionDenied, RecordingInProgress
from ..grading import StyleDirection
from ..orchestrator import AnalysisContext
from ..runtime import StudioRuntime, get_runtime

router = APIRouter(prefix="/recording", tags=["recording"])


class StartRequest(BaseModel):
	unit_id: str = Field(min_length=1)
	question: str = Field(min_length=1)
	unit_label: str = ""
	question_type: str = "General"
	keywords: str = ""
	style: Optional[str] = Field(default=None, description="EASY, NATIVE, STORYTELLER or empty")


@router.get("")
async def state(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	return rt.recorder.snapshot()


@router.post("/start")
async def start(req: StartRequest, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	style = StyleDirection.parse(req.style)
	if req.style and style is None:
		raise HTTPException(status_code=400, detail="style must be one of EASY, NATIVE, STORYTELLER")
	context = AnalysisContext(
		unit_id=req.unit_id,
		question=req.question.strip(),
		unit_label=req.unit_label,
		question_type=req.question_type,
		keywords=req.keywords,
		style=style,
	)
	rt.playback.stop()
	try:
		await rt.recorder.start(context)
	except RecordingInProgress as e:
		raise HTTPException(status_code=409, detail=str(e))
	except PermissionDenied as e:
		raise HTTPException(status_code=403, detail=f"Microphone permission is required: {e}")
	return rt.recorder.snapshot()


@router.post("/pause")
async def pause(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	rt.recorder.pause()
	return rt.recorder.snapshot()


@router.post("/resume")
async def resume(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	rt.recorder.resume()
	return rt.recorder.snapshot()


@router.post("/cancel")
async def cancel(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	await rt.recorder.cancel()
	return rt.recorder.snapshot()


@router.post("/stop")
async def stop(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	"""Finish the take and grade it. Returns the persisted study session."""
	if rt.orchestrator.busy:
		raise HTTPException(status_code=409, detail="An answer is already being analyzed")
	context = rt.recorder.context
	clip = await rt.recorder.stop()
	if clip is None:
		raise HTTPException(status_code=409, detail="Nothing is being recorded")
	try:
		session = await rt.orchestrator.analyze(clip, context)
	except AnalysisInProgress as e:
		raise HTTPException(status_code=409, detail=str(e))
	except AnalysisFailed as e:
		raise HTTPException(status_code=502, detail=e.notice)
	return session.as_dict()
