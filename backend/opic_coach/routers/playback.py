from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..playback import PlaybackKind
from ..recording import RecordingState
from ..runtime import StudioRuntime, get_runtime

router = APIRouter(prefix="/playback", tags=["playback"])


class PlayRequest(BaseModel):
	playback_id: str = Field(min_length=1)
	text: str = ""
	asset_ref: Optional[str] = None
	kind: PlaybackKind = PlaybackKind.MODEL_ANSWER


def _status_payload(rt: StudioRuntime) -> Dict[str, Any]:
	status = rt.playback.status
	if status is None:
		return {"playback_id": None, "state": "idle"}
	return {"playback_id": status.playback_id, "state": status.state}


@router.get("/status")
async def status(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	return _status_payload(rt)


@router.post("/play")
async def play(req: PlayRequest, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	if not req.text.strip() and not req.asset_ref:
		raise HTTPException(status_code=400, detail="text or asset_ref is required")
	if rt.recorder.state in (RecordingState.RECORDING, RecordingState.PAUSED):
		raise HTTPException(status_code=409, detail="Stop recording before playing audio")
	await rt.playback.play(req.text, req.playback_id, req.asset_ref, req.kind)
	return _status_payload(rt)


@router.post("/stop")
async def stop(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	rt.playback.stop()
	return _status_payload(rt)


@router.post("/reset")
async def reset(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	await rt.reset()
	return _status_payload(rt)
