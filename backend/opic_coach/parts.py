"""
Three-part answers (intro / body / conclusion).

Model answers and their translations travel through the pipeline as ThreePart
records. Only the log store sees them as a single text column, joined with
PART_DELIMITER; `ThreePart.parse` is the inverse of `ThreePart.join`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict

PART_DELIMITER = " [PART] "

_MARKUP = re.compile(r"[*_`#\[\]]")
_SPACES = re.compile(r"\s+")


def clean_ai_text(text: Any) -> str:
	"""Strip markdown artifacts and collapse whitespace in model output."""
	if not text:
		return ""
	return _SPACES.sub(" ", _MARKUP.sub("", str(text))).strip()


def flatten_text(text: str) -> str:
	"""Plain-text view of a delimited field: delimiters become spaces."""
	return _SPACES.sub(" ", (text or "").replace(PART_DELIMITER.strip(), " ")).strip()


@dataclass(frozen=True)
class ThreePart:
	intro: str = ""
	body: str = ""
	conclusion: str = ""

	@classmethod
	def from_mapping(cls, data: Dict[str, Any]) -> "ThreePart":
		return cls(
			intro=clean_ai_text(data.get("intro")),
			body=clean_ai_text(data.get("body")),
			conclusion=clean_ai_text(data.get("conclusion")),
		)

	@classmethod
	def parse(cls, stored: str) -> "ThreePart":
		"""Recover the parts from a joined field.

		Values written before the delimiter existed come back as a single intro.
		"""
		stored = stored or ""
		if PART_DELIMITER not in stored:
			return cls(intro=stored)
		pieces = stored.split(PART_DELIMITER)
		pieces += [""] * (3 - len(pieces))
		# Anything past the third delimiter belongs to the conclusion
		return cls(pieces[0], pieces[1], PART_DELIMITER.join(pieces[2:]))

	def join(self) -> str:
		return PART_DELIMITER.join((self.intro, self.body, self.conclusion))

	def flatten(self) -> str:
		return " ".join(p for p in (self.intro, self.body, self.conclusion) if p).strip()

	def as_dict(self) -> Dict[str, str]:
		return {"intro": self.intro, "body": self.body, "conclusion": self.conclusion}

	def __bool__(self) -> bool:
		return bool(self.intro or self.body or self.conclusion)
