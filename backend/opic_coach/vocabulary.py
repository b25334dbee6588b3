from __future__ import annotations

import json
import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, List

from .errors import BackendRejected
from .gemini_client import GeminiClient
from .parts import ThreePart, clean_ai_text

logger = logging.getLogger(__name__)

EXPRESSION_COUNT = 10


@dataclass(frozen=True)
class KeyExpression:
	expression: str
	meaning: str
	usage_example: str


def new_vocabulary_id() -> str:
	return f"V_{int(time.time() * 1000)}_{uuid.uuid4().hex[:3].upper()}"


def build_extraction_prompt(model_answer: str, language: str) -> str:
	return f"""
You are an OPIc expert. From the provided model answer, extract exactly {EXPRESSION_COUNT} essential expressions
or phrases that are critical for achieving an AL (Advanced Low) grade.
For each expression, provide:
1. expression (the phrase in English)
2. meaning ({language} translation)
3. usageExample (a short natural English sentence using the expression)
Return STRICT JSON only: a JSON array of objects like [{{"expression": "...", "meaning": "...", "usageExample": "..."}}]

Model Answer: "{model_answer}"
""".strip()


def parse_expressions(raw: str) -> List[KeyExpression]:
	data: Any
	try:
		data = json.loads(raw)
	except (TypeError, ValueError):
		match = re.search(r"\[[\s\S]*\]", raw or "")
		if not match:
			raise BackendRejected("Failed to parse expression list from model output")
		try:
			data = json.loads(match.group(0))
		except ValueError as err:
			raise BackendRejected("Failed to parse expression list from model output") from err
	if isinstance(data, dict):
		# Some models wrap the list: {"expressions": [...]}
		data = next((v for v in data.values() if isinstance(v, list)), [])
	items: List[KeyExpression] = []
	for entry in data if isinstance(data, list) else []:
		if not isinstance(entry, dict):
			continue
		expression = clean_ai_text(entry.get("expression"))
		if not expression:
			continue
		items.append(
			KeyExpression(
				expression=expression,
				meaning=clean_ai_text(entry.get("meaning")),
				usage_example=clean_ai_text(entry.get("usageExample") or entry.get("usage_example")),
			)
		)
	if not items:
		raise BackendRejected("model returned no expressions")
	return items[:EXPRESSION_COUNT]


async def extract_key_expressions(
	correction: ThreePart,
	language: str,
	client_factory: Callable[..., GeminiClient] = GeminiClient,
) -> List[KeyExpression]:
	model_answer = correction.flatten()
	if not model_answer:
		return []
	try:
		client = client_factory()
	except ValueError as err:
		raise BackendRejected(str(err)) from err
	try:
		raw = await client.generate(build_extraction_prompt(model_answer, language), response_mime_type="application/json")
	finally:
		await client.aclose()
	expressions = parse_expressions(raw)
	logger.info("extracted %d key expressions", len(expressions))
	return expressions
