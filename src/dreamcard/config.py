"""Configuration loading.

Settings come from ``dreamcard.yaml`` (or the file named by ``--config`` /
``DREAMCARD_CONFIG``), layered over built-in defaults, with a small set of
environment variables taking precedence over both. Secrets are never read
from the file; providers pick them up from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Literal

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from dreamcard.models.project import InputLimits
from dreamcard.observability.logging import get_logger
from dreamcard.providers.image import GenerationParams
from dreamcard.queue.base import JobOptions
from dreamcard.validation.quality import QualityRules

log = get_logger(__name__)

DEFAULT_CONFIG_FILE = "dreamcard.yaml"
DEFAULT_LLM_PROVIDER = "openrouter/meta-llama/llama-3.3-70b-instruct"
DEFAULT_IMAGE_PROVIDER = "replicate"

RenderMode = Literal["single", "two_stage"]
StorageBackend = Literal["local", "supabase"]


class ConfigError(Exception):
    """Raised when configuration cannot be loaded."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Invalid config {path}: {reason}")


def _pick(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    """Keep only the keys that are fields of dataclass *cls*."""
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        log.warning("config_unknown_keys", section=cls.__name__, keys=unknown)
    return {k: v for k, v in data.items() if k in known}


@dataclass
class ProvidersConfig:
    """Provider spec strings (``provider/model``)."""

    llm: str = DEFAULT_LLM_PROVIDER
    image: str = DEFAULT_IMAGE_PROVIDER

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProvidersConfig:
        return cls(**_pick(cls, data))


@dataclass
class InterpreterConfig:
    """Dream interpreter retry and sampling settings.

    Attributes:
        max_retries: Extra attempts after the first (total = max_retries + 1).
        accept_degraded: Return the last parsed plan when every attempt
            failed the quality gate, instead of failing the job.
        temperature: Sampling temperature for the chat model.
        max_tokens: Response token cap for the chat model.
    """

    max_retries: int = 2
    accept_degraded: bool = True
    temperature: float = 0.8
    max_tokens: int = 1500

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InterpreterConfig:
        config = cls(**_pick(cls, data))
        if config.max_retries < 0:
            raise ValueError("interpreter.max_retries must be >= 0")
        return config


@dataclass
class RenderConfig:
    """Image generation settings.

    ``two_stage`` renders a fast sketch of every panel first, then the final
    images; ``single`` renders finals only.
    """

    mode: RenderMode = "single"
    width: int = 768
    height: int = 1024
    steps: int = 35
    guidance_scale: float = 9.0
    scheduler: str = "DPMSolverMultistep"
    output_format: str = "png"
    sketch_steps: int = 20
    sketch_guidance_scale: float = 7.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RenderConfig:
        config = cls(**_pick(cls, data))
        if config.mode not in ("single", "two_stage"):
            raise ValueError(f"render.mode must be 'single' or 'two_stage', got '{config.mode}'")
        return config

    def params(self) -> GenerationParams:
        """Parameters for final renders."""
        return GenerationParams(
            width=self.width,
            height=self.height,
            steps=self.steps,
            guidance_scale=self.guidance_scale,
            scheduler=self.scheduler,
            output_format=self.output_format,
        )

    def sketch_params(self) -> GenerationParams:
        """Faster parameters for two-stage sketches."""
        return GenerationParams(
            width=self.width,
            height=self.height,
            steps=self.sketch_steps,
            guidance_scale=self.sketch_guidance_scale,
            scheduler=self.scheduler,
            output_format=self.output_format,
        )


@dataclass
class QueueConfig:
    """Whole-job retry and retention policy."""

    attempts: int = 2
    backoff_delay_seconds: float = 5.0
    keep_completed_seconds: float = 3600.0
    keep_completed_count: int = 100
    keep_failed_seconds: float = 7200.0
    lease_seconds: float = 600.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueueConfig:
        config = cls(**_pick(cls, data))
        if config.attempts < 1:
            raise ValueError("queue.attempts must be >= 1")
        return config

    def job_options(self) -> JobOptions:
        return JobOptions(
            attempts=self.attempts,
            backoff_delay=self.backoff_delay_seconds,
            keep_completed_seconds=self.keep_completed_seconds,
            keep_completed_count=self.keep_completed_count,
            keep_failed_seconds=self.keep_failed_seconds,
            lease_seconds=self.lease_seconds,
        )


@dataclass
class WorkerConfig:
    """Worker concurrency and start-rate limit."""

    concurrency: int = 2
    rate_limit_max: int = 10
    rate_limit_window_seconds: float = 60.0
    poll_interval_seconds: float = 1.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkerConfig:
        config = cls(**_pick(cls, data))
        if config.concurrency < 1:
            raise ValueError("worker.concurrency must be >= 1")
        if config.rate_limit_max < 1:
            raise ValueError("worker.rate_limit_max must be >= 1")
        return config


@dataclass
class StorageConfig:
    """Where records and artifacts live."""

    database: Path = field(default_factory=lambda: Path(".dreamcard") / "dreamcard.db")
    artifacts_dir: Path = field(default_factory=lambda: Path(".dreamcard") / "artifacts")
    public_base_url: str | None = None
    backend: StorageBackend = "local"
    bucket: str = "dreamcard-images"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageConfig:
        values = _pick(cls, data)
        for key in ("database", "artifacts_dir"):
            if key in values:
                values[key] = Path(values[key])
        config = cls(**values)
        if config.backend not in ("local", "supabase"):
            raise ValueError(
                f"storage.backend must be 'local' or 'supabase', got '{config.backend}'"
            )
        return config


@dataclass
class LimitsConfig:
    """Accepted input text length."""

    min_input_length: int = 10
    max_input_length: int = 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LimitsConfig:
        return cls(**_pick(cls, data))

    def input_limits(self) -> InputLimits:
        return InputLimits(min_length=self.min_input_length, max_length=self.max_input_length)


@dataclass
class DreamCardConfig:
    """Complete runtime configuration."""

    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    interpreter: InterpreterConfig = field(default_factory=InterpreterConfig)
    quality: QualityRules = field(default_factory=QualityRules)
    render: RenderConfig = field(default_factory=RenderConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DreamCardConfig:
        """Create config from a parsed YAML mapping.

        Args:
            data: Top-level mapping; every section is optional.

        Returns:
            DreamCardConfig instance.

        Raises:
            ValueError: If a section holds an invalid value.
        """

        def section(name: str) -> dict[str, Any]:
            value = data.get(name) or {}
            if not isinstance(value, dict):
                raise ValueError(f"'{name}' must be a mapping")
            return dict(value)

        return cls(
            providers=ProvidersConfig.from_dict(section("providers")),
            interpreter=InterpreterConfig.from_dict(section("interpreter")),
            quality=QualityRules.from_dict(section("quality")),
            render=RenderConfig.from_dict(section("render")),
            queue=QueueConfig.from_dict(section("queue")),
            worker=WorkerConfig.from_dict(section("worker")),
            storage=StorageConfig.from_dict(section("storage")),
            limits=LimitsConfig.from_dict(section("limits")),
        )

    def apply_env(self) -> DreamCardConfig:
        """Apply environment overrides in place and return self."""
        if llm := os.getenv("DREAMCARD_LLM_PROVIDER"):
            self.providers.llm = llm
        if image := os.getenv("DREAMCARD_IMAGE_PROVIDER"):
            self.providers.image = image
        if database := os.getenv("DREAMCARD_DATABASE"):
            self.storage.database = Path(database)
        if mode := os.getenv("DREAMCARD_RENDER_MODE"):
            if mode not in ("single", "two_stage"):
                raise ValueError(
                    f"DREAMCARD_RENDER_MODE must be 'single' or 'two_stage', got '{mode}'"
                )
            self.render.mode = mode  # type: ignore[assignment]
        return self


def resolve_config_path(path: Path | None = None) -> Path:
    """Explicit path, then ``DREAMCARD_CONFIG``, then ``./dreamcard.yaml``."""
    if path is not None:
        return path
    if env_path := os.getenv("DREAMCARD_CONFIG"):
        return Path(env_path)
    return Path.cwd() / DEFAULT_CONFIG_FILE


def load_config(path: Path | None = None) -> DreamCardConfig:
    """Load configuration from YAML and the environment.

    A missing file yields the defaults (plus environment overrides).

    Args:
        path: Config file; see :func:`resolve_config_path`.

    Returns:
        Loaded configuration.

    Raises:
        ConfigError: If the file cannot be read or holds invalid values.
    """
    config_path = resolve_config_path(path)
    data: dict[str, Any] = {}

    if config_path.exists():
        yaml = YAML(typ="safe")
        try:
            with config_path.open(encoding="utf-8") as f:
                loaded = yaml.load(f)
        except OSError as e:
            raise ConfigError(config_path, f"cannot read file: {e}") from e
        except YAMLError as e:
            raise ConfigError(config_path, f"invalid YAML: {e}") from e
        if loaded is not None:
            if not isinstance(loaded, dict):
                raise ConfigError(config_path, "top level must be a mapping")
            data = dict(loaded)
        log.debug("config_loaded", path=str(config_path))
    else:
        log.debug("config_defaults", path=str(config_path))

    try:
        return DreamCardConfig.from_dict(data).apply_env()
    except (TypeError, ValueError) as e:
        raise ConfigError(config_path, str(e)) from e
