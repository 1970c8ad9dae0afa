"""Configuration loading and validation for promptbatch."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Tuple

import yaml

from promptbatch.core.retry_policy import DEFAULT_RETRYABLE_KEYWORDS

CONFIG_DIRNAME = "config"
CONFIG_FILENAME = "config.yaml"
ENV_CONFIG_PATH = "PROMPTBATCH_CONFIG"
ASPECT_RATIOS = ("3:2", "2:3", "9:16")
PROVIDERS = ("openai", "simulated")


DEFAULT_CONFIG: Dict[str, Any] = {
    "service": {
        "provider": "openai",
        "base_url": "https://ismaque.org",
        "endpoint": "/v1/chat/completions",
        "model": "sora_image",
        "api_key": "",
        "api_key_env": "PROMPTBATCH_API_KEY",
        "timeout": 300,
        "system_prompt": "You are a helpful assistant.",
    },
    "simulation": {
        "delay_seconds": 2.0,
        "failure_rate": 0.1,
        "rate_limit_rate": 0.05,
        "seed": None,
    },
    "generation": {
        "style": "",
        "aspect_ratio": None,
        "attachments": [],
    },
    "scheduler": {
        "concurrency": 1,
        "max_concurrency": 3,
        "retry_failed_passes": 0,
        "retry": {
            "max_attempts": 3,
            "backoff_seconds": 1.0,
            "max_backoff_seconds": None,
            "keywords": list(DEFAULT_RETRYABLE_KEYWORDS),
        },
    },
    "paths": {
        "logs": "logs",
        "exports": "data/exports",
        "images": "data/images",
    },
    "logging": {
        "console_level": "INFO",
        "file_level": "DEBUG",
        "json_logs": False,
    },
    "progress": {
        "enabled": True,
    },
    "download": {
        "timeout": 60,
    },
    "testing": {
        "dry_run": False,
    },
}


@dataclass(frozen=True)
class ConfigLoadResult:
    """Container for the merged configuration."""

    config: Dict[str, Any]
    sources: Tuple[str, ...]


def _default_config_path(base_dir: Path) -> Path:
    return base_dir / CONFIG_DIRNAME / CONFIG_FILENAME


def _ensure_default_config(path: Path) -> None:
    if path.exists():
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    with tmp.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(DEFAULT_CONFIG, handle, sort_keys=True, allow_unicode=True)
    tmp.replace(path)


def _load_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, MutableMapping):
        raise ValueError(f"Configuration file {path} must contain a mapping at the root")
    return dict(data)


def _deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = dict(base)
    for key, value in overlay.items():
        if (
            key in merged
            and isinstance(merged[key], MutableMapping)
            and isinstance(value, MutableMapping)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_path_defaults(config: Dict[str, Any], base_dir: Path) -> Dict[str, Any]:
    paths = dict(config.get("paths", {}))
    for key, value in paths.items():
        if isinstance(value, str) and value:
            path = Path(value)
            paths[key] = str(path if path.is_absolute() else (base_dir / path).resolve())
    config["paths"] = paths
    return config


def _collect_sources(base_dir: Path, explicit: str | Path | None) -> Iterable[Tuple[Path, bool]]:
    yield _default_config_path(base_dir), True
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        yield Path(env_path), False
    if explicit:
        yield Path(explicit), False


def validate_config(config: Dict[str, Any]) -> Dict[str, Any]:
    service = config.get("service", {})
    provider = str(service.get("provider", "")).lower()
    if provider not in PROVIDERS:
        raise ValueError(f"service.provider must be one of {', '.join(PROVIDERS)}")
    if provider == "openai" and not service.get("base_url"):
        raise ValueError("service.base_url is required for the openai provider")
    timeout = service.get("timeout")
    if timeout is None or float(timeout) <= 0:
        raise ValueError("service.timeout must be a positive number")

    scheduler = config.get("scheduler", {})
    max_concurrency = int(scheduler.get("max_concurrency", 3))
    if max_concurrency < 1:
        raise ValueError("scheduler.max_concurrency must be >= 1")
    concurrency = int(scheduler.get("concurrency", 1))
    if not 1 <= concurrency <= max_concurrency:
        raise ValueError(f"scheduler.concurrency must be between 1 and {max_concurrency}")
    if int(scheduler.get("retry_failed_passes", 0)) < 0:
        raise ValueError("scheduler.retry_failed_passes must be >= 0")

    retry = scheduler.get("retry", {})
    if int(retry.get("max_attempts", 3)) < 1:
        raise ValueError("scheduler.retry.max_attempts must be >= 1")
    if float(retry.get("backoff_seconds", 1.0)) < 0:
        raise ValueError("scheduler.retry.backoff_seconds must be >= 0")

    aspect_ratio = config.get("generation", {}).get("aspect_ratio")
    if aspect_ratio and aspect_ratio not in ASPECT_RATIOS:
        raise ValueError(f"generation.aspect_ratio must be one of {', '.join(ASPECT_RATIOS)}")

    simulation = config.get("simulation", {})
    for key in ("failure_rate", "rate_limit_rate"):
        rate = float(simulation.get(key, 0.0))
        if not 0.0 <= rate <= 1.0:
            raise ValueError(f"simulation.{key} must be between 0 and 1")
    return config


def load_config(
    path: str | Path | None = None,
    *,
    base_dir: str | Path | None = None,
    include_sources: bool = False,
) -> ConfigLoadResult | Dict[str, Any]:
    """Load defaults merged with ``config/config.yaml``, the env file and ``path``."""

    root = Path(base_dir) if base_dir is not None else Path.cwd()
    config: Dict[str, Any] = json.loads(json.dumps(DEFAULT_CONFIG))
    sources: list[str] = []

    for candidate, required in _collect_sources(root, path):
        if required:
            _ensure_default_config(candidate)
        if not candidate.exists():
            if path is not None and candidate == Path(path):
                raise FileNotFoundError(f"Configuration file not found: {candidate}")
            continue
        config = _deep_merge(config, _load_yaml(candidate))
        sources.append(str(candidate.resolve()))

    config = json.loads(json.dumps(config))  # deep copy via JSON for immutability
    config = _apply_path_defaults(config, root)
    config = validate_config(config)

    result = ConfigLoadResult(config=config, sources=tuple(sources))
    if include_sources:
        return result
    return result.config


__all__ = ["DEFAULT_CONFIG", "ConfigLoadResult", "load_config", "validate_config"]
