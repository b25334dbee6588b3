"""
Grading and Model-Answer Generation
===================================

One Gemini call per recorded answer does two jobs:

1. Objective evaluation: verbatim transcript, an OPIc level from LEVELS and
   coaching feedback. The selected style direction must not move the grade.
2. Stylized rewrite: a three-part model answer built from the learner's
   keywords, plus its translation. Only this half follows the style direction.

The independence of (1) from the style direction is an instruction-level
contract with the backend; `parse_grading_response` only enforces the shape.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from .audio import AudioClip
from .errors import BackendRejected
from .gemini_client import GeminiClient
from .parts import ThreePart, clean_ai_text
from .settings import settings

logger = logging.getLogger(__name__)

# OPIc proficiency scale, lowest first
LEVELS: List[str] = ["NL", "NM", "NH", "IL", "IM1", "IM2", "IM3", "IH", "AL"]


class StyleDirection(str, Enum):
	EASY = "EASY"
	NATIVE = "NATIVE"
	STORYTELLER = "STORYTELLER"

	@classmethod
	def parse(cls, value: Optional[str]) -> Optional["StyleDirection"]:
		if not value:
			return None
		try:
			return cls(value.strip().upper())
		except ValueError:
			return None


_STYLE_INSTRUCTIONS: Dict[Optional[StyleDirection], str] = {
	StyleDirection.EASY: (
		"Focus on maximum preservation of the user's original expressions and sentence structures. "
		"If the user's speech is logically sound and indicates an IH or AL level, DO NOT rewrite it into a "
		"standard or 'better' style. Keep their original voice. ONLY correct: "
		"1. Critical grammatical errors (subject-verb agreement, tense misuse). "
		"2. Phrases that are so unnatural or broken that they hinder understanding. "
		"The goal is a polished version of THEIR OWN words, not a new answer."
	),
	StyleDirection.NATIVE: (
		"Focus on idiomatic expressions. Upgrade vocabulary to natural spoken native idioms "
		"(e.g. 'blow off some steam' instead of 'stress relief'). Strengthen emotional adjectives and exclamations."
	),
	StyleDirection.STORYTELLER: (
		"Focus on detailed storytelling. Add specific details using the 5W1H principle. Describe the atmosphere, "
		"weather, or exact feelings at that moment to make it sensory and vivid."
	),
	None: "Focus on providing a high-quality, balanced OPIc AL level response with natural flow and clear structure.",
}


@dataclass(frozen=True)
class GradingResult:
	transcript: str
	predicted_level: str
	feedback: str
	correction: ThreePart
	translation: ThreePart


def level_rank(level: str) -> int:
	"""Position on the scale; -1 for anything off-scale (e.g. '-')."""
	try:
		return LEVELS.index(level)
	except ValueError:
		return -1


def build_grading_prompt(question: str, keywords: str, style: Optional[StyleDirection]) -> str:
	language = settings.feedback_language
	return f"""
You are a professional OPIc grader. Perform the following two tasks strictly.

TASK 1: Objective Evaluation
Analyze the user's audio based SOLELY on standard OPIc evaluation criteria.
DO NOT let the selected style preference ({style.value if style else "none"}) affect the grading.
1. transcript: Exact transcription of the user's speech.
2. predictedLevel: Objective level, one of {", ".join(reversed(LEVELS))}, based on the audio performance.
3. feedback: Constructive advice for the user in {language} based on standard criteria.

TASK 2: Stylized Model Answer
Generate an OPIc AL level model answer to the question below that incorporates the user's keywords: "{keywords}".
Target Question: "{question}"
4. correctionParts: The model answer in 3 parts (intro, body, conclusion). ONLY FOR THIS PART, strictly follow these style guidelines: {_STYLE_INSTRUCTIONS[style]}
5. translationParts: {language} translation of the model answer, in the same 3 parts.

Return STRICT JSON only, no markdown, following exactly this schema:
{{"transcript": string, "predictedLevel": string, "feedback": string,
  "correctionParts": {{"intro": string, "body": string, "conclusion": string}},
  "translationParts": {{"intro": string, "body": string, "conclusion": string}}}}
""".strip()


def _extract_json_block(text: str) -> Dict[str, Any]:
	try:
		return json.loads(text)
	except (TypeError, ValueError):
		pass
	# Try to locate the first JSON object in the text
	match = re.search(r"\{[\s\S]*\}", text or "")
	if match:
		try:
			return json.loads(match.group(0))
		except ValueError:
			pass
	raise BackendRejected("Failed to parse JSON from Gemini output")


def _require_parts(data: Dict[str, Any], name: str) -> ThreePart:
	block = data.get(name)
	if not isinstance(block, dict):
		raise BackendRejected(f"grading response is missing {name}")
	for key in ("intro", "body", "conclusion"):
		if not isinstance(block.get(key), str):
			raise BackendRejected(f"grading response {name}.{key} is missing")
	parts = ThreePart.from_mapping(block)
	if not parts:
		raise BackendRejected(f"grading response {name} is empty")
	return parts


def parse_grading_response(raw: str) -> GradingResult:
	data = _extract_json_block(raw)
	if not isinstance(data, dict):
		raise BackendRejected("grading response is not a JSON object")
	for key in ("transcript", "predictedLevel", "feedback"):
		if not isinstance(data.get(key), str):
			raise BackendRejected(f"grading response is missing {key}")
	level = data["predictedLevel"].strip().upper()
	if level not in LEVELS:
		raise BackendRejected(f"grading response level {level!r} is not on the scale")
	return GradingResult(
		transcript=clean_ai_text(data["transcript"]),
		predicted_level=level,
		feedback=clean_ai_text(data["feedback"]),
		correction=_require_parts(data, "correctionParts"),
		translation=_require_parts(data, "translationParts"),
	)


class GradingClient:
	def __init__(
		self,
		client_factory: Callable[..., GeminiClient] = GeminiClient,
		*,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
	) -> None:
		self._client_factory = client_factory
		self.model = model or settings.gemini_model
		self.timeout = timeout or settings.grading_timeout_seconds

	async def grade(
		self,
		clip: AudioClip,
		question: str,
		keywords: str = "",
		style: Optional[StyleDirection] = None,
	) -> GradingResult:
		parts = [
			{"inline_data": {"mime_type": clip.mime_type, "data": base64.b64encode(clip.data).decode("ascii")}},
			{"text": build_grading_prompt(question, keywords, style)},
		]
		try:
			client = self._client_factory(model=self.model, timeout=self.timeout)
		except ValueError as err:
			raise BackendRejected(str(err)) from err
		try:
			raw = await asyncio.wait_for(
				client.generate_multimodal(parts, response_mime_type="application/json"),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError as err:
			raise BackendRejected(f"grading timed out after {self.timeout:.0f}s") from err
		except httpx.HTTPError as err:
			raise BackendRejected(f"grading request failed: {err}") from err
		finally:
			await client.aclose()
		result = parse_grading_response(raw)
		logger.info("graded answer: level=%s style=%s", result.predicted_level, style.value if style else "none")
		return result
