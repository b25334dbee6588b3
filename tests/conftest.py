import asyncio
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from opic_coach import models  # noqa: F401
from opic_coach.db import Base
from opic_coach.errors import AssetIOFailure, BackendRejected, PermissionDenied
from opic_coach.grading import GradingResult
from opic_coach.parts import ThreePart
from opic_coach.runtime import StudioRuntime
from opic_coach.settings import Settings


INTRO = "Honestly, I go to the park near my place almost every weekend."
BODY = "Last Saturday I rode my bike along the river and grabbed a coffee."
CONCLUSION = "It is the best way for me to blow off some steam."


def make_result(level: str = "IH") -> GradingResult:
	return GradingResult(
		transcript="I go park weekend, ride bike",
		predicted_level=level,
		feedback="시제를 일관되게 사용해 보세요.",
		correction=ThreePart(INTRO, BODY, CONCLUSION),
		translation=ThreePart("솔직히 저는 거의 매주 공원에 가요.", "지난 토요일에는 강을 따라 자전거를 탔어요.", "스트레스를 푸는 최고의 방법이에요."),
	)


class FakeCapture:
	def __init__(self, fail: bool = False) -> None:
		self.fail = fail
		self.on_chunk = None
		self.opened = 0
		self.closed = 0
		self.paused = 0
		self.resumed = 0

	async def open(self, on_chunk) -> None:
		if self.fail:
			raise PermissionDenied("no input device")
		self.opened += 1
		self.on_chunk = on_chunk

	def feed(self, chunk: bytes) -> None:
		self.on_chunk(chunk)

	def pause(self) -> None:
		self.paused += 1

	def resume(self) -> None:
		self.resumed += 1

	def close(self) -> None:
		self.closed += 1


class FakeHandle:
	def __init__(self, audio) -> None:
		self.audio = audio
		self.stopped = False
		self._ended = asyncio.Event()

	def stop(self) -> None:
		self.stopped = True
		self._ended.set()

	def finish(self) -> None:
		self._ended.set()

	async def wait(self) -> None:
		await self._ended.wait()


class FakeOutput:
	def __init__(self) -> None:
		self.handles: List[FakeHandle] = []

	def play(self, audio) -> FakeHandle:
		handle = FakeHandle(audio)
		self.handles.append(handle)
		return handle

	@property
	def sounding(self) -> List[FakeHandle]:
		return [h for h in self.handles if not h.stopped and not h._ended.is_set()]


class FakeSpeaker:
	def __init__(self) -> None:
		self.spoken: List[str] = []
		self.cancelled = 0
		self._gate = None

	async def speak(self, text: str) -> None:
		self.spoken.append(text)
		self._gate = asyncio.Event()
		await self._gate.wait()

	def cancel(self) -> None:
		self.cancelled += 1
		if self._gate is not None:
			self._gate.set()


class FakeSynthesizer:
	def __init__(self, audio: bytes = b"\x10\x00\x20\x00" * 600, fail: bool = False) -> None:
		self.audio = audio
		self.fail = fail
		self.calls: List[str] = []
		self.gate: Optional[asyncio.Event] = None

	async def synthesize(self, text: str) -> bytes:
		self.calls.append(text)
		if self.gate is not None:
			await self.gate.wait()
		else:
			await asyncio.sleep(0)
		if self.fail:
			raise BackendRejected("tts backend said no")
		return self.audio


class MemoryBlobStore:
	def __init__(self, fail_upload: bool = False) -> None:
		self.files: Dict[str, bytes] = {}
		self.fail_upload = fail_upload
		self.fetches: List[str] = []

	async def upload(self, data: bytes, name: str, container: str) -> Optional[str]:
		if self.fail_upload:
			return None
		ref = f"{container}/{name}"
		self.files[ref] = data
		return ref

	async def fetch(self, ref: str) -> bytes:
		self.fetches.append(ref)
		if ref not in self.files:
			raise AssetIOFailure(f"missing {ref}")
		return self.files[ref]

	async def delete(self, ref: str) -> bool:
		return self.files.pop(ref, None) is not None


class FakeGrading:
	def __init__(self, result: Optional[GradingResult] = None, error: Optional[Exception] = None) -> None:
		self.result = result or make_result()
		self.error = error
		self.calls = []

	async def grade(self, clip, question, keywords="", style=None) -> GradingResult:
		self.calls.append((clip, question, keywords, style))
		await asyncio.sleep(0)
		if self.error is not None:
			raise self.error
		return self.result


@pytest.fixture
def session_factory():
	engine = create_engine(
		"sqlite://",
		connect_args={"check_same_thread": False},
		poolclass=StaticPool,
		future=True,
	)
	Base.metadata.create_all(bind=engine)
	yield sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
	engine.dispose()


@pytest.fixture
def config():
	return Settings(
		SPEECH_CACHE_MAX_ENTRIES=16,
		SYNTHESIS_TIMEOUT_SECONDS=5,
		SYNTHESIS_WAIT_SECONDS=5,
		ASSET_TIMEOUT_SECONDS=5,
		CAPTURE_TIMEOUT_SECONDS=1,
		NATIVE_QUESTION_VOICE=True,
	)


@pytest.fixture
def runtime(session_factory, config):
	return StudioRuntime(
		session_factory=session_factory,
		blob_store=MemoryBlobStore(),
		grading=FakeGrading(),
		synthesizer=FakeSynthesizer(),
		capture=FakeCapture(),
		output=FakeOutput(),
		native_speaker=FakeSpeaker(),
		config=config,
	)
