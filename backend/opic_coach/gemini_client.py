from __future__ import annotations
import base64
import httpx
from typing import Any, Dict, List, Optional
from .errors import BackendRejected
from .settings import settings

class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: float = 30,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=timeout)

	async def generate(self, prompt: str, *, response_mime_type: Optional[str] = None) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if response_mime_type:
			payload["generationConfig"] = {"responseMimeType": response_mime_type}
		data = await self._post_payload(payload, fallback_prompt=prompt)
		if isinstance(data, str):
			return data
		return self._first_part(data).get("text") or ""

	async def generate_multimodal(
		self,
		parts: List[Dict[str, Any]],
		*,
		role: str = "user",
		response_mime_type: Optional[str] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": role, "parts": parts}]}
		if response_mime_type:
			payload["generationConfig"] = {"responseMimeType": response_mime_type}
		data = await self._post_payload(payload, fallback_prompt=None, allow_fallback=False)
		text = self._first_part(data).get("text")
		if not isinstance(text, str):
			raise BackendRejected("Gemini response carried no text part")
		return text

	async def synthesize_speech(self, text: str, *, voice: Optional[str] = None) -> bytes:
		"""Return raw mono 16-bit PCM for `text` from a TTS-capable model."""
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": text}]}],
			"generationConfig": {
				"responseModalities": ["AUDIO"],
				"speechConfig": {
					"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice or settings.tts_voice}},
				},
			},
		}
		data = await self._post_payload(payload, fallback_prompt=None, allow_fallback=False)
		part = self._first_part(data)
		inline = part.get("inlineData") or part.get("inline_data") or {}
		encoded = inline.get("data")
		if not encoded:
			raise BackendRejected("Gemini speech response carried no audio")
		try:
			return base64.b64decode(encoded, validate=True)
		except ValueError as err:
			raise BackendRejected("Gemini speech response was not valid base64") from err

	@staticmethod
	def _first_part(data: Dict[str, Any]) -> Dict[str, Any]:
		try:
			part = data["candidates"][0]["content"]["parts"][0]
		except (KeyError, IndexError, TypeError) as err:
			raise BackendRejected(f"Unexpected Gemini response: {str(data)[:200]}") from err
		if not isinstance(part, dict):
			raise BackendRejected("Unexpected Gemini response part")
		return part

	async def _post_payload(
		self,
		payload: Dict[str, Any],
		*,
		fallback_prompt: Optional[str],
		allow_fallback: bool = True,
	) -> Any:
		"""POST to generateContent; returns decoded JSON, or fallback text."""
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			last_error = BackendRejected(f"Gemini returned HTTP {http_err.response.status_code}")
			last_error.__cause__ = http_err
		except httpx.RequestError as net_err:
			last_error = BackendRejected(f"Gemini request failed: {net_err}")
			last_error.__cause__ = net_err
		if last_error is None:
			try:
				return r.json()
			except ValueError:
				last_error = BackendRejected(f"Unexpected Gemini response: {r.text[:200]}")
		if not allow_fallback or not self._fallback_enabled:
			raise last_error
		if fallback_prompt is None:
			raise last_error
		return await self._fallback_generate(fallback_prompt, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Optional[Exception]) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or BackendRejected("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			if primary_error is not None:
				raise BackendRejected(
					f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise
