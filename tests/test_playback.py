import asyncio

from opic_coach.audio import pcm16_to_wav
from opic_coach.parts import PART_DELIMITER
from opic_coach.playback import PlaybackController, PlaybackKind
from opic_coach.speech_cache import SpeechCache, speech_key
from opic_coach.synthesis import InFlightMarker

from conftest import BODY, CONCLUSION, INTRO, FakeOutput, FakeSpeaker, FakeSynthesizer, MemoryBlobStore

ANSWER = f"{INTRO} {BODY} {CONCLUSION}"
PCM = b"\x00\x10\x00\x20" * 1200  # 2400 samples


def _controller(**overrides):
	parts = dict(
		cache=SpeechCache(),
		marker=InFlightMarker(),
		synthesizer=FakeSynthesizer(audio=PCM),
		blob_store=MemoryBlobStore(),
		output=FakeOutput(),
		native_speaker=FakeSpeaker(),
	)
	parts.update(overrides)
	controller = PlaybackController(
		parts["cache"],
		parts["marker"],
		parts["synthesizer"],
		parts["blob_store"],
		parts["output"],
		parts["native_speaker"],
		sample_rate=24000,
		wait_timeout=1,
		asset_timeout=1,
	)
	return controller, parts


def test_cached_text_plays_from_any_display_context():
	controller, parts = _controller()
	parts["cache"].put(ANSWER, PCM)
	joined = PART_DELIMITER.join([INTRO, BODY, CONCLUSION])

	async def scenario():
		live = await controller.play(ANSWER, "result-card")
		controller.stop()
		history = await controller.play(joined, "history-SESS_1")
		return live, history

	live, history = asyncio.run(scenario())
	assert live.state == "playing" and live.playback_id == "result-card"
	assert history.state == "playing" and history.playback_id == "history-SESS_1"
	assert parts["synthesizer"].calls == []
	assert parts["blob_store"].fetches == []
	assert len(parts["output"].handles) == 2
	assert parts["output"].handles[0].stopped


def test_same_id_toggles_to_stop():
	controller, parts = _controller()
	parts["cache"].put(ANSWER, PCM)

	async def scenario():
		first = await controller.play(ANSWER, "card")
		second = await controller.play(ANSWER, "card")
		return first, second

	first, second = asyncio.run(scenario())
	assert first.state == "playing"
	assert second is None
	assert controller.status is None
	assert parts["output"].handles[0].stopped
	assert len(parts["output"].handles) == 1


def test_new_request_stops_the_active_source():
	controller, parts = _controller()
	parts["cache"].put(ANSWER, PCM)
	parts["cache"].put("Another sentence.", PCM)

	async def scenario():
		await controller.play(ANSWER, "a")
		await controller.play("Another sentence.", "b")
		return list(parts["output"].sounding)

	sounding = asyncio.run(scenario())
	assert len(sounding) == 1
	assert controller.status.playback_id == "b"


def test_concurrent_requests_share_one_synthesis():
	synthesizer = FakeSynthesizer(audio=PCM)
	controller, parts = _controller(synthesizer=synthesizer)

	async def scenario():
		synthesizer.gate = asyncio.Event()
		first = asyncio.create_task(controller.play(ANSWER, "a"))
		await asyncio.sleep(0)
		second = asyncio.create_task(controller.play(ANSWER, "b"))
		await asyncio.sleep(0)
		synthesizer.gate.set()
		await asyncio.gather(first, second)

	asyncio.run(scenario())
	assert synthesizer.calls == [ANSWER]
	assert len(parts["output"].handles) == 1
	assert controller.status.playback_id == "b"
	assert ANSWER in parts["cache"]


def test_replay_never_resynthesizes():
	controller, parts = _controller()

	async def scenario():
		await controller.play(ANSWER, "a")
		controller.stop()
		await controller.play(ANSWER, "a")

	asyncio.run(scenario())
	assert parts["synthesizer"].calls == [ANSWER]
	assert len(parts["output"].handles) == 2


def test_model_asset_is_raw_pcm_and_recording_is_container():
	controller, parts = _controller()
	store = parts["blob_store"]
	store.files["default/AL_MODEL_SESS_1.pcm"] = PCM
	store.files["default/USER_RAW_SESS_1.wav"] = pcm16_to_wav(PCM, 16000)

	async def scenario():
		await controller.play(ANSWER, "model", "default/AL_MODEL_SESS_1.pcm", PlaybackKind.MODEL_ANSWER)
		await controller.play("", "mine", "default/USER_RAW_SESS_1.wav", PlaybackKind.RECORDING)

	asyncio.run(scenario())
	model, mine = parts["output"].handles
	assert model.audio.sample_rate == 24000
	assert len(model.audio.samples) == len(PCM) // 2
	assert mine.audio.sample_rate == 16000
	assert len(mine.audio.samples) == len(PCM) // 2
	# model-answer bytes are cached under their text
	assert parts["cache"].get(ANSWER) == PCM
	assert parts["synthesizer"].calls == []


def test_waits_for_background_job_instead_of_resynthesizing():
	controller, parts = _controller()
	marker = parts["marker"]
	key = speech_key(ANSWER)

	async def finish_job():
		await asyncio.sleep(0.01)
		parts["cache"].put(key, PCM)
		marker.release()

	async def scenario():
		marker.claim("SESS_1", key)
		job = asyncio.create_task(finish_job())
		status = await controller.play(ANSWER, "card")
		await job
		return status

	status = asyncio.run(scenario())
	assert status.state == "playing"
	assert parts["synthesizer"].calls == []


def test_failed_background_job_falls_back_to_on_demand_synthesis():
	controller, parts = _controller()
	marker = parts["marker"]

	async def scenario():
		marker.claim("SESS_1", speech_key(ANSWER))
		asyncio.get_running_loop().call_later(0.01, marker.release)
		return await controller.play(ANSWER, "card")

	status = asyncio.run(scenario())
	assert status.state == "playing"
	assert parts["synthesizer"].calls == [ANSWER]


def test_stop_while_loading_never_sounds():
	synthesizer = FakeSynthesizer(audio=PCM)
	controller, parts = _controller(synthesizer=synthesizer)

	async def scenario():
		synthesizer.gate = asyncio.Event()
		pending = asyncio.create_task(controller.play(ANSWER, "a"))
		await asyncio.sleep(0)
		assert controller.status.state == "loading"
		controller.stop()
		synthesizer.gate.set()
		await pending

	asyncio.run(scenario())
	assert parts["output"].handles == []
	assert controller.status is None
	# the synthesized audio is still cached for next time
	assert ANSWER in parts["cache"]


def test_question_uses_native_voice():
	controller, parts = _controller()

	async def scenario():
		status = await controller.play("What do you do on weekends?", "question", kind=PlaybackKind.QUESTION)
		await asyncio.sleep(0)
		controller.stop()
		return status

	status = asyncio.run(scenario())
	assert status.state == "playing"
	assert parts["native_speaker"].spoken == ["What do you do on weekends?"]
	assert parts["native_speaker"].cancelled == 1
	assert parts["synthesizer"].calls == []
	assert len(parts["cache"]) == 0


def test_errors_reset_status():
	controller, parts = _controller()

	async def scenario():
		missing = await controller.play("", "mine", "default/USER_RAW_gone.wav", PlaybackKind.RECORDING)
		parts["blob_store"].files["default/broken.wav"] = b"not audio"
		broken = await controller.play("", "broken", "default/broken.wav", PlaybackKind.RECORDING)
		return missing, broken

	missing, broken = asyncio.run(scenario())
	assert missing is None and broken is None
	assert controller.status is None
	assert parts["output"].handles == []


def test_natural_end_clears_status():
	controller, parts = _controller()
	parts["cache"].put(ANSWER, PCM)

	async def scenario():
		await controller.play(ANSWER, "card")
		parts["output"].handles[0].finish()
		await asyncio.sleep(0)
		await asyncio.sleep(0)

	asyncio.run(scenario())
	assert controller.status is None
	assert not controller.active
