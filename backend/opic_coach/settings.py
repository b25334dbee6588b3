from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	# Grading/rewrite model
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Speech synthesis model and prebuilt voice
	gemini_tts_model: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_TTS_MODEL")
	tts_voice: str = Field(default="Puck", validation_alias="GEMINI_TTS_VOICE")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional, text-only calls)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="OPIc Coach", validation_alias="OPENROUTER_TITLE")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# Folder-backed asset storage
	blob_root: str = Field(default="./assets", validation_alias="BLOB_ROOT")
	blob_container: str = Field(default="default", validation_alias="BLOB_CONTAINER")

	# Audio
	tts_sample_rate: int = Field(default=24000, validation_alias="TTS_SAMPLE_RATE")
	capture_sample_rate: int = Field(default=16000, validation_alias="CAPTURE_SAMPLE_RATE")
	capture_gain: float = Field(default=2.5, validation_alias="CAPTURE_GAIN")
	# 0 keeps every entry for the lifetime of the process
	speech_cache_max_entries: int = Field(default=256, validation_alias="SPEECH_CACHE_MAX_ENTRIES")
	native_question_voice: bool = Field(default=True, validation_alias="NATIVE_QUESTION_VOICE")
	native_speech_rate: int = Field(default=160, validation_alias="NATIVE_SPEECH_RATE")

	# Timeouts (seconds) around every external call
	capture_timeout_seconds: float = Field(default=5.0, validation_alias="CAPTURE_TIMEOUT_SECONDS")
	grading_timeout_seconds: float = Field(default=90.0, validation_alias="GRADING_TIMEOUT_SECONDS")
	synthesis_timeout_seconds: float = Field(default=120.0, validation_alias="SYNTHESIS_TIMEOUT_SECONDS")
	synthesis_wait_seconds: float = Field(default=120.0, validation_alias="SYNTHESIS_WAIT_SECONDS")
	asset_timeout_seconds: float = Field(default=30.0, validation_alias="ASSET_TIMEOUT_SECONDS")

	# Language used for coaching feedback and the model-answer translation
	feedback_language: str = Field(default="Korean", validation_alias="FEEDBACK_LANGUAGE")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
