"""
Process-wide defaults of the compose engine.

``ComposeConfig`` holds the defaults applied when ``compile()`` or
``AgentConfig`` are not given explicit values. It can be resolved from a YAML
file and ``COMPOSEFLOW_*`` environment variables:

    >>> from composeflow.config import ComposeConfig, set_config
    >>> set_config(ComposeConfig.resolve("composeflow.yaml", max_workers=8))

A YAML file holds the same keys as the dataclass, optionally nested under a
``composeflow`` section:

    composeflow:
      max_run_steps: 200
      agent_max_step: 20
"""

import logging
import os
import threading
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_MAPPING = {
    "COMPOSEFLOW_MAX_RUN_STEPS": ("max_run_steps", int),
    "COMPOSEFLOW_MAX_WORKERS": ("max_workers", int),
    "COMPOSEFLOW_AGENT_MAX_STEP": ("agent_max_step", int),
    "COMPOSEFLOW_CALLBACK_TIMEOUT": ("callback_timeout", float),
}


@dataclass(frozen=True)
class ComposeConfig:
    """
    Engine defaults.

    Attributes:
        max_run_steps: Step budget of a compiled graph.
        max_workers: Worker threads per invocation (None = Python's default).
        agent_max_step: Step budget of a ReAct agent loop.
        callback_timeout: Maximum time of one callback handler call, seconds.
    """

    max_run_steps: int = 1000
    max_workers: Optional[int] = None
    agent_max_step: int = 12
    callback_timeout: float = 5.0

    @classmethod
    def resolve(cls, yaml_path: Optional[str] = None, **overrides: Any) -> "ComposeConfig":
        """
        Resolve the configuration with proper precedence hierarchy.

        Precedence (highest to lowest):
        1. ``overrides`` keyword arguments
        2. Environment variables (``COMPOSEFLOW_*``)
        3. YAML file
        4. Defaults

        Raises:
            ValueError: On unknown keys or values that are not numbers.
        """
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}

        if yaml_path:
            with open(yaml_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise ValueError(f"config file {yaml_path} must hold a mapping")
            section = loaded.get("composeflow", loaded) or {}
            unknown = set(section) - known
            if unknown:
                raise ValueError(f"unknown config keys in {yaml_path}: {sorted(unknown)}")
            values.update({k: v for k, v in section.items() if v is not None})

        for env_var, (key, convert) in ENV_MAPPING.items():
            env_value = os.getenv(env_var)
            if env_value:
                try:
                    values[key] = convert(env_value)
                except ValueError as e:
                    raise ValueError(f"invalid value for {env_var}: {env_value!r}") from e

        for key, value in overrides.items():
            if key not in known:
                raise ValueError(f"unknown config key: {key}")
            if value is not None:
                values[key] = value

        config = cls(**values)
        logger.debug(
            f"Compose configuration resolved: max_run_steps={config.max_run_steps}, "
            f"max_workers={config.max_workers}, agent_max_step={config.agent_max_step}"
        )
        return config

    def with_overrides(self, **overrides: Any) -> "ComposeConfig":
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


_config = ComposeConfig()
_config_lock = threading.Lock()


def get_config() -> ComposeConfig:
    with _config_lock:
        return _config


def set_config(config: ComposeConfig) -> ComposeConfig:
    """Install ``config`` as the process default and return the previous one."""
    global _config
    with _config_lock:
        previous, _config = _config, config
    return previous
