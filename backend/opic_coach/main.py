import logging

from fastapi import FastAPI

from . import models  # noqa: F401  (registers tables on Base)
from .db import Base, engine, ensure_schema
from .runtime import build_runtime
from .settings import settings
from .routers import recording
from .routers import sessions
from .routers import playback
from .routers import units
from .routers import vocabulary

logging.basicConfig(
	level=settings.log_level.upper(),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="OPIc Coach API")
app.include_router(recording.router)
app.include_router(sessions.router)
app.include_router(playback.router)
app.include_router(units.router)
app.include_router(vocabulary.router)


@app.get("/info")
def root():
	runtime = getattr(app.state, "runtime", None)
	return {
		"status": "ok",
		"gemini_configured": bool(settings.gemini_api_key),
		"tts_model": settings.gemini_tts_model,
		"cached_clips": len(runtime.cache) if runtime is not None else 0,
	}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	ensure_schema()
	if getattr(app.state, "runtime", None) is None:
		app.state.runtime = build_runtime()
	units_loaded = app.state.runtime.orchestrator.reload_units()
	logger.info("study station ready: %d units, gemini configured=%s", len(units_loaded), bool(settings.gemini_api_key))


@app.on_event("shutdown")
async def shutdown_event():
	runtime = getattr(app.state, "runtime", None)
	if runtime is not None:
		await runtime.teardown()
