"""
Load the agent configuration.

Precedence, lowest first: the YAML file, then variables from the optional
.env file, then process environment variables named
``<PREFIX>SECTION__KEY``. The merged mapping is validated by AppConfig,
which rejects unknown keys.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Any, MutableMapping, Sequence

import yaml
from dotenv import load_dotenv

from offline_agent.config.models import (
    AppConfig,
    ConfigLoadRequest,
)

_EXAMPLE_CONFIG = Path("examples/config.yaml")
_DATA_SUBDIRS = ("config", "cache", "push", "logs")


def _seed_config_from_example(target: Path) -> None:
    if not _EXAMPLE_CONFIG.exists():
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(_EXAMPLE_CONFIG, target)


def _prepare_data_dirs(yaml_path: Path) -> None:
    # Only the conventional data/config/<file> location owns a data root.
    if yaml_path.parent.name != "config":
        return
    data_root = yaml_path.parent.parent
    for name in _DATA_SUBDIRS:
        (data_root / name).mkdir(parents=True, exist_ok=True)


def _load_yaml_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        _seed_config_from_example(path)
    if not path.exists():
        raise FileNotFoundError(f"No agent config at {path} and no example to copy")

    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Agent config must be a YAML mapping at the top level, found {type(loaded).__name__}")
    return loaded


def _override_path(env_name: str, prefix: str) -> Sequence[str]:
    segments = [part.lower() for part in env_name[len(prefix) :].split("__") if part]
    if not segments:
        raise ValueError(f"Environment override {env_name} names no config key")
    return segments


def _section_for(config: MutableMapping[str, Any], segments: Sequence[str]) -> MutableMapping[str, Any]:
    section: MutableMapping[str, Any] = config
    for name in segments[:-1]:
        # Optional sections may be missing from YAML.
        child = section.setdefault(name, {})
        if not isinstance(child, dict):
            raise TypeError(f"Config key {'.'.join(segments)} goes through a non-mapping value at {name}")
        section = child
    return section


def apply_env_overrides(config: MutableMapping[str, Any], env_prefix: str) -> None:
    """Write every ``env_prefix`` variable into config; values stay strings until validation."""
    for name, value in os.environ.items():
        if name.startswith(env_prefix):
            segments = _override_path(name, env_prefix)
            _section_for(config, segments)[segments[-1]] = value


class YamlConfigLoader:
    async def load(self, request: ConfigLoadRequest = ConfigLoadRequest()) -> AppConfig:
        yaml_path = Path(request.yaml_path)
        _prepare_data_dirs(yaml_path)
        config = _load_yaml_mapping(yaml_path)

        if request.dotenv_path is not None and Path(request.dotenv_path).exists():
            load_dotenv(dotenv_path=request.dotenv_path, override=False)

        apply_env_overrides(config, request.env_prefix)
        return AppConfig.model_validate(config)
