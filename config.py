# config.py
"""Configuration settings for the Slotweave chapter synthesis system.
Uses Pydantic BaseSettings for automatic environment variable loading.
"""

from __future__ import annotations

import os

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

logger = structlog.get_logger()


class TaskProfile(BaseModel):
    """Model name and sampling parameters for one pipeline task."""

    model_config = ConfigDict(frozen=True)

    model: str
    temperature: float
    top_p: float
    top_k: int | None = None
    max_tokens: int | None = None


class ModelAssignments(BaseModel):
    """Immutable task -> profile table threaded through every stage."""

    model_config = ConfigDict(frozen=True)

    structure: TaskProfile
    character: TaskProfile
    scene: TaskProfile
    hook: TaskProfile
    transition: TaskProfile
    integration: TaskProfile
    editing_decide: TaskProfile
    editing_targeted: TaskProfile
    editing_regenerate: TaskProfile
    editing_polish: TaskProfile
    editing_evaluate: TaskProfile

    def for_task(self, task: str) -> TaskProfile:
        try:
            return getattr(self, task)
        except AttributeError as exc:
            raise KeyError(f"Unknown generation task: {task}") from exc

    @classmethod
    def task_names(cls) -> list[str]:
        return list(cls.model_fields)


class SlotweaveSettings(BaseSettings):
    """Full configuration for the Slotweave system."""

    # API and Model Configuration
    OPENAI_API_BASE: str = "http://127.0.0.1:8080/v1"
    OPENAI_API_KEY: str = "nope"

    # Base Model Definitions
    LARGE_MODEL: str = "Qwen3-14B"
    MEDIUM_MODEL: str = "Qwen3-8B"
    SMALL_MODEL: str = "Qwen3-4B"
    NARRATOR_MODEL: str = "Qwen3-14B"

    # Dynamic Model Assignments (set from base models if not specified in env)
    STRUCTURE_MODEL: str | None = None
    CHARACTER_MODEL: str | None = None
    SCENE_MODEL: str | None = None
    HOOK_MODEL: str | None = None
    TRANSITION_MODEL: str | None = None
    INTEGRATION_MODEL: str | None = None
    EDITING_MODEL: str | None = None
    EVALUATION_MODEL: str | None = None

    # Sampling per task
    TEMPERATURE_STRUCTURE: float = 0.7
    TOP_P_STRUCTURE: float = 0.9
    TOP_K_STRUCTURE: int = 40
    TEMPERATURE_CHARACTER: float = 0.8
    TOP_P_CHARACTER: float = 0.9
    TOP_K_CHARACTER: int = 40
    TEMPERATURE_SCENE: float = 0.8
    TOP_P_SCENE: float = 0.9
    TOP_K_SCENE: int = 40
    TEMPERATURE_HOOK: float = 0.7
    TOP_P_HOOK: float = 0.8
    TOP_K_HOOK: int = 30
    TEMPERATURE_TRANSITION: float = 0.6
    TOP_P_TRANSITION: float = 0.8
    TOP_K_TRANSITION: int = 30
    TEMPERATURE_INTEGRATION: float = 0.3
    TOP_P_INTEGRATION: float = 0.7
    TOP_K_INTEGRATION: int = 20
    TEMPERATURE_EDITING_DECIDE: float = 0.3
    TEMPERATURE_EDITING_TARGETED: float = 0.5
    TEMPERATURE_EDITING_REGENERATE: float = 0.7
    TEMPERATURE_EDITING_POLISH: float = 0.4
    TEMPERATURE_EDITING_EVALUATE: float = 0.3
    LLM_TOP_P: float = 0.8

    # LLM Call Settings & Retry Policy
    LLM_RETRY_ATTEMPTS: int = 5
    LLM_RETRY_DELAY_SECONDS: float = 2.0
    LLM_RETRY_JITTER_SECONDS: float = 1.0
    LLM_RETRY_MAX_DELAY_SECONDS: float = 60.0
    LLM_RATE_LIMIT_FLOOR_SECONDS: float = 10.0
    LLM_RATE_LIMIT_FLOOR_STEP_SECONDS: float = 5.0
    LLM_UNAVAILABLE_FLOOR_SECONDS: float = 5.0
    LLM_UNAVAILABLE_FLOOR_STEP_SECONDS: float = 3.0
    HTTPX_TIMEOUT: float = 600.0
    TIKTOKEN_DEFAULT_ENCODING: str = "cl100k_base"
    FALLBACK_CHARS_PER_TOKEN: float = 4.0
    TOKENIZER_CACHE_SIZE: int = 10
    # Concurrency and Rate Limiting
    MAX_CONCURRENT_LLM_CALLS: int = 4

    # Generation Parameters
    MAX_GENERATION_TOKENS: int = 16384
    DEFAULT_TARGET_LENGTH: int = 3000
    DEFAULT_CHAPTER_COUNT: int = 10
    PREVIOUS_CHAPTER_TAIL_CHARS: int = 200

    # Synthesis
    HOOK_MIN_CHARS: int = 10
    HOOK_MAX_CHARS: int = 100
    HOOK_MAX_CANDIDATES: int = 5
    HOOK_DIGEST_MAPPINGS: int = 5
    HOOK_DIGEST_CHARS: int = 100
    TRANSITION_CONTEXT_CHARS: int = 60
    TRANSITION_MAX_CHARS: int = 60

    # Editing Loop
    EDITING_MAX_ITERATIONS: int = 2
    EDITING_QUALITY_THRESHOLD: int = 70
    EDITING_LOW_CONFIDENCE_THRESHOLD: int = 60
    EDITING_DEFAULT_EVALUATION_SCORE: int = 75
    EDITING_REGENERATE_PREVIEW_CHARS: int = 8000
    EDITING_EVALUATE_PREVIEW_CHARS: int = 3000

    # Coordinator options
    ENABLE_LIGHT_POLISH: bool = True
    ENABLE_CONSISTENCY_CHECK: bool = True
    ENABLE_FALLBACK_RETRY: bool = False
    COORDINATOR_MAX_RETRIES: int = 2

    # Coherence store thresholds
    INTERNAL_SLOT_CHAR_LIMIT: int = 150
    DESCRIPTION_SHARE_LIMIT: float = 0.45
    INTERNAL_SHARE_LIMIT: float = 0.35
    INTERNAL_BLOCK_OVERLOAD_CHARS: int = 400

    # Repetition Tracking
    REPETITION_PHRASE_MIN_CHARS: int = 4
    REPETITION_PHRASE_MAX_CHARS: int = 8
    REPETITION_IN_CHAPTER_THRESHOLD: int = 3
    REPETITION_HIGH_SEVERITY_COUNT: int = 5
    REPETITION_TRACKER_NGRAM_SIZE: int = 4
    REPETITION_TRACKER_THRESHOLD: int = 5
    REPETITION_STATS_FILE: str = "repetition_stats.json"

    # Output and File Paths
    BASE_OUTPUT_DIR: str = "slotweave_output"
    CHAPTERS_DIR: str = "chapters"
    CHAPTER_LOGS_DIR: str = "chapter_logs"
    DEBUG_OUTPUTS_DIR: str = "debug_outputs"

    # Logging & UI
    LOG_LEVEL_STR: str = Field("INFO", alias="AGENT_LOG_LEVEL")
    LOG_FORMAT: str = (
        "%(asctime)s - %(levelname)s - [%(name)s:%(funcName)s:%(lineno)d] - %(message)s"
    )
    LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    LOG_FILE: str | None = "slotweave_run.log"
    ENABLE_RICH_PROGRESS: bool = True

    @model_validator(mode="after")
    def set_dynamic_model_defaults(self) -> SlotweaveSettings:
        if self.STRUCTURE_MODEL is None:
            self.STRUCTURE_MODEL = self.NARRATOR_MODEL
        if self.CHARACTER_MODEL is None:
            self.CHARACTER_MODEL = self.NARRATOR_MODEL
        if self.SCENE_MODEL is None:
            self.SCENE_MODEL = self.NARRATOR_MODEL
        if self.HOOK_MODEL is None:
            self.HOOK_MODEL = self.SMALL_MODEL
        if self.TRANSITION_MODEL is None:
            self.TRANSITION_MODEL = self.SMALL_MODEL
        if self.INTEGRATION_MODEL is None:
            self.INTEGRATION_MODEL = self.MEDIUM_MODEL
        if self.EDITING_MODEL is None:
            self.EDITING_MODEL = self.NARRATOR_MODEL
        if self.EVALUATION_MODEL is None:
            self.EVALUATION_MODEL = self.LARGE_MODEL
        return self

    def model_assignments(self) -> ModelAssignments:
        """Build the task profile table from the current settings."""
        return ModelAssignments(
            structure=TaskProfile(
                model=self.STRUCTURE_MODEL,
                temperature=self.TEMPERATURE_STRUCTURE,
                top_p=self.TOP_P_STRUCTURE,
                top_k=self.TOP_K_STRUCTURE,
            ),
            character=TaskProfile(
                model=self.CHARACTER_MODEL,
                temperature=self.TEMPERATURE_CHARACTER,
                top_p=self.TOP_P_CHARACTER,
                top_k=self.TOP_K_CHARACTER,
            ),
            scene=TaskProfile(
                model=self.SCENE_MODEL,
                temperature=self.TEMPERATURE_SCENE,
                top_p=self.TOP_P_SCENE,
                top_k=self.TOP_K_SCENE,
            ),
            hook=TaskProfile(
                model=self.HOOK_MODEL,
                temperature=self.TEMPERATURE_HOOK,
                top_p=self.TOP_P_HOOK,
                top_k=self.TOP_K_HOOK,
                max_tokens=1024,
            ),
            transition=TaskProfile(
                model=self.TRANSITION_MODEL,
                temperature=self.TEMPERATURE_TRANSITION,
                top_p=self.TOP_P_TRANSITION,
                top_k=self.TOP_K_TRANSITION,
                max_tokens=512,
            ),
            integration=TaskProfile(
                model=self.INTEGRATION_MODEL,
                temperature=self.TEMPERATURE_INTEGRATION,
                top_p=self.TOP_P_INTEGRATION,
                top_k=self.TOP_K_INTEGRATION,
            ),
            editing_decide=TaskProfile(
                model=self.EVALUATION_MODEL,
                temperature=self.TEMPERATURE_EDITING_DECIDE,
                top_p=0.7,
                top_k=20,
                max_tokens=2048,
            ),
            editing_targeted=TaskProfile(
                model=self.EDITING_MODEL,
                temperature=self.TEMPERATURE_EDITING_TARGETED,
                top_p=self.LLM_TOP_P,
                top_k=40,
            ),
            editing_regenerate=TaskProfile(
                model=self.EDITING_MODEL,
                temperature=self.TEMPERATURE_EDITING_REGENERATE,
                top_p=0.9,
                top_k=60,
            ),
            editing_polish=TaskProfile(
                model=self.EDITING_MODEL,
                temperature=self.TEMPERATURE_EDITING_POLISH,
                top_p=self.LLM_TOP_P,
                top_k=30,
            ),
            editing_evaluate=TaskProfile(
                model=self.EVALUATION_MODEL,
                temperature=self.TEMPERATURE_EDITING_EVALUATE,
                top_p=0.7,
                top_k=20,
                max_tokens=2048,
            ),
        )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env")


settings = SlotweaveSettings()


CHAPTERS_DIR = os.path.join(settings.BASE_OUTPUT_DIR, settings.CHAPTERS_DIR)
CHAPTER_LOGS_DIR = os.path.join(settings.BASE_OUTPUT_DIR, settings.CHAPTER_LOGS_DIR)
DEBUG_OUTPUTS_DIR = os.path.join(settings.BASE_OUTPUT_DIR, settings.DEBUG_OUTPUTS_DIR)
REPETITION_STATS_FILE_PATH = os.path.join(
    settings.BASE_OUTPUT_DIR, settings.REPETITION_STATS_FILE
)

# Ensure output directories exist
os.makedirs(settings.BASE_OUTPUT_DIR, exist_ok=True)
os.makedirs(CHAPTERS_DIR, exist_ok=True)
os.makedirs(CHAPTER_LOGS_DIR, exist_ok=True)
os.makedirs(DEBUG_OUTPUTS_DIR, exist_ok=True)
