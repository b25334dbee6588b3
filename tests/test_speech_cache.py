import asyncio

import pytest

from opic_coach.errors import BackendRejected
from opic_coach.speech_cache import SpeechCache, speech_key


def test_key_ignores_delimiters_and_spacing():
	assert speech_key("Hello [PART]  there [PART] friend ") == "Hello there friend"
	assert speech_key("Hello there friend") == "Hello there friend"
	assert speech_key("   ") == ""


def test_lru_eviction():
	cache = SpeechCache(max_entries=2)
	cache.put("a", b"1")
	cache.put("b", b"2")
	assert cache.get("a") == b"1"
	cache.put("c", b"3")
	assert "b" not in cache
	assert "a" in cache and "c" in cache
	assert len(cache) == 2


def test_unbounded_and_clear():
	cache = SpeechCache()
	for i in range(50):
		cache.put(str(i), b"x")
	assert len(cache) == 50
	cache.clear()
	assert len(cache) == 0
	assert cache.get("1") is None


def test_empty_key_is_never_stored():
	cache = SpeechCache()
	cache.put("", b"\x00\x00")
	assert len(cache) == 0


def test_concurrent_get_or_create_runs_factory_once():
	cache = SpeechCache()
	calls = []

	async def produce():
		calls.append(1)
		await asyncio.sleep(0.01)
		return b"\x01\x00"

	async def scenario():
		results = await asyncio.gather(
			cache.get_or_create("same text", produce),
			cache.get_or_create("same text", produce),
			cache.get_or_create("same text", produce),
		)
		again = await cache.get_or_create("same text", produce)
		return results, again

	results, again = asyncio.run(scenario())
	assert results == [b"\x01\x00"] * 3
	assert again == b"\x01\x00"
	assert len(calls) == 1
	assert not cache.pending("same text")


def test_failure_reaches_every_waiter_and_is_not_cached():
	cache = SpeechCache()

	async def broken():
		await asyncio.sleep(0.01)
		raise BackendRejected("no audio")

	async def scenario():
		return await asyncio.gather(
			cache.get_or_create("t", broken),
			cache.get_or_create("t", broken),
			return_exceptions=True,
		)

	outcomes = asyncio.run(scenario())
	assert all(isinstance(o, BackendRejected) for o in outcomes)
	assert "t" not in cache
	assert not cache.pending("t")


def test_cancelled_producer_fails_waiters():
	cache = SpeechCache()

	async def slow():
		await asyncio.sleep(10)
		return b"\x00\x00"

	async def scenario():
		producer = asyncio.create_task(cache.get_or_create("t", slow))
		await asyncio.sleep(0)
		waiter = asyncio.create_task(cache.get_or_create("t", slow))
		await asyncio.sleep(0)
		producer.cancel()
		with pytest.raises(BackendRejected):
			await waiter
		with pytest.raises(asyncio.CancelledError):
			await producer

	asyncio.run(scenario())
	assert not cache.pending("t")
