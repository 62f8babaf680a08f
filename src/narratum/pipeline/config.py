"""Pipeline configuration loading."""

from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from narratum.observability.audit import DEFAULT_MAX_ENTRIES
from narratum.observability.metrics import DEFAULT_MAX_SAMPLES
from narratum.validation.coherence import CoherenceCheckConfig
from narratum.validation.structure import StructureValidatorConfig

# Environment variables overriding file values, mapped to config fields.
ENV_OVERRIDES: dict[str, str] = {
    "NARRATUM_MAX_RETRIES": "max_retries",
    "NARRATUM_STAGE_TIMEOUT": "stage_timeout",
    "NARRATUM_GLOBAL_TIMEOUT": "global_timeout",
    "NARRATUM_RETRY_DELAY": "retry_delay",
}

_TUPLE_FIELDS = {"forbidden_patterns", "action_verbs", "presence_phrases"}


class PipelineConfigError(Exception):
    """Raised when pipeline configuration cannot be loaded."""

    def __init__(self, source: Path | str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid pipeline config from {source}: {reason}")


def _section(cls: type[Any], data: dict[str, Any], name: str) -> Any:
    """Build a nested config dataclass, rejecting unknown keys."""
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown keys in {name}: {', '.join(unknown)}")
    values: dict[str, Any] = {}
    for key, value in data.items():
        if key in _TUPLE_FIELDS:
            value = tuple(value)
        elif key == "required_patterns":
            value = {role: tuple(patterns) for role, patterns in dict(value).items()}
        elif isinstance(value, dict):
            value = dict(value)
        values[key] = value
    return cls(**values)


@dataclass
class PipelineConfig:
    """Configuration of one orchestrator.

    Durations are in seconds.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        stage_timeout: Deadline for each stage.
        global_timeout: Deadline for the whole run.
        retry_delay: Delay between attempts used by the default retry policy.
        enable_structure_validation: Run the structural validator.
        enable_coherence_validation: Run the coherence validator.
        include_feedback_on_retry: Append rejection feedback to retried prompts.
        parallel_roles: Dispatch independent roles concurrently.
        audit_max_entries: Retention cap of an audit trail built from this config.
        metrics_max_samples: Retention cap of a metrics collector built from this config.
        structure: Structural validator settings.
        coherence: Coherence validator settings.
    """

    max_retries: int = 3
    stage_timeout: float = 30.0
    global_timeout: float = 120.0
    retry_delay: float = 0.1
    enable_structure_validation: bool = True
    enable_coherence_validation: bool = True
    include_feedback_on_retry: bool = True
    parallel_roles: bool = False
    audit_max_entries: int = DEFAULT_MAX_ENTRIES
    metrics_max_samples: int = DEFAULT_MAX_SAMPLES
    structure: StructureValidatorConfig = field(default_factory=StructureValidatorConfig)
    coherence: CoherenceCheckConfig = field(default_factory=CoherenceCheckConfig)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        for name in ("stage_timeout", "global_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.retry_delay < 0:
            raise ValueError(f"retry_delay must be >= 0, got {self.retry_delay}")
        if self.audit_max_entries < 0 or self.metrics_max_samples < 0:
            raise ValueError("retention caps must be >= 0")

    @classmethod
    def for_testing(cls) -> PipelineConfig:
        return cls(max_retries=1, stage_timeout=5.0, global_timeout=10.0, retry_delay=0.0)

    @classmethod
    def for_performance(cls) -> PipelineConfig:
        return cls(
            max_retries=1,
            stage_timeout=10.0,
            global_timeout=60.0,
            retry_delay=0.05,
            enable_coherence_validation=False,
            parallel_roles=True,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineConfig:
        """Create config from a dictionary.

        Keys mirror the attribute names; ``structure`` and ``coherence`` are
        nested mappings.

        Raises:
            ValueError: On unknown keys or out-of-range values.
            TypeError: On values of the wrong type.
        """
        data = dict(data)
        structure = _section(StructureValidatorConfig, dict(data.pop("structure", {}) or {}), "structure")
        coherence = _section(CoherenceCheckConfig, dict(data.pop("coherence", {}) or {}), "coherence")

        known = {f.name for f in dataclasses.fields(cls)} - {"structure", "coherence"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown keys: {', '.join(unknown)}")

        values: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            if f.name not in data:
                continue
            raw = data[f.name]
            if f.type == "bool":
                if not isinstance(raw, bool):
                    raise TypeError(f"{f.name} must be a boolean, got {raw!r}")
                values[f.name] = raw
            elif f.type == "int":
                values[f.name] = int(raw)
            else:
                values[f.name] = float(raw)
        return cls(structure=structure, coherence=coherence, **values)

    def with_env_overrides(self, environ: dict[str, str] | None = None) -> PipelineConfig:
        """Copy of this config with ``NARRATUM_*`` environment overrides applied.

        Raises:
            PipelineConfigError: If an override value cannot be parsed.
        """
        env = os.environ if environ is None else environ
        changes: dict[str, Any] = {}
        for var, attr in ENV_OVERRIDES.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            try:
                changes[attr] = int(raw) if attr == "max_retries" else float(raw)
            except ValueError as e:
                raise PipelineConfigError(var, f"cannot parse {raw!r}") from e
        if not changes:
            return self
        try:
            return dataclasses.replace(self, **changes)
        except ValueError as e:
            raise PipelineConfigError("environment", str(e)) from e


def load_pipeline_config(config_path: Path, *, apply_env: bool = True) -> PipelineConfig:
    """Load pipeline configuration from a YAML file.

    Args:
        config_path: Path to the YAML file.
        apply_env: Apply ``NARRATUM_*`` environment overrides.

    Returns:
        PipelineConfig instance.

    Raises:
        PipelineConfigError: If config cannot be loaded.
    """
    if not config_path.exists():
        raise PipelineConfigError(config_path, "File not found")

    yaml = YAML(typ="safe")
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise PipelineConfigError(config_path, "Empty file")
        if not isinstance(data, dict):
            raise PipelineConfigError(config_path, "Top level must be a mapping")

        config = PipelineConfig.from_dict(data)
    except PipelineConfigError:
        raise
    except Exception as e:
        raise PipelineConfigError(config_path, str(e)) from e

    return config.with_env_overrides() if apply_env else config
