from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..runtime import StudioRuntime, get_runtime

router = APIRouter(prefix="/units", tags=["units"])


class UnitRequest(BaseModel):
	topic: str = ""
	essence: str = ""


@router.get("")
async def list_units(rt: StudioRuntime = Depends(get_runtime)) -> List[Dict[str, Any]]:
	return [asdict(u) for u in rt.orchestrator.reload_units()]


@router.put("/{unit_id}")
async def register_unit(unit_id: str, req: UnitRequest, rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	unit = rt.progress_store.upsert(unit_id, req.topic.strip(), req.essence.strip())
	rt.orchestrator.units[unit.unit_id] = unit
	return asdict(unit)


@router.get("/progress")
async def progress(rt: StudioRuntime = Depends(get_runtime)) -> Dict[str, Any]:
	return asdict(rt.progress_store.summary())
