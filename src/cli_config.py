"""Engine configuration assembly for the CLI.

Layers, lowest to highest precedence: built-in ``EngineConfig`` defaults,
the ``--config`` file (YAML, or JSON by extension), ``DEPSIM_*`` environment
variables, then CLI flags and ``--set`` overrides. Malformed input at any
layer is logged and skipped; it never raises to the CLI.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterable, Optional

import yaml

from constants import Constants
from similarity.config import EngineConfig

logger = logging.getLogger(__name__)

# Environment variable -> dotted EngineConfig key.
ENV_OVERRIDES = {
    "DEPSIM_MAX_DEPENDENTS_TO_SCAN": "limits.default_max_dependents_to_scan",
    "DEPSIM_MAX_LIVE_CANDIDATES": "limits.default_max_live_candidates",
    "DEPSIM_TOP_SEARCH_LIMIT": "limits.default_top_search_limit",
    "DEPSIM_REQUEST_DELAY_MS": "fetch.request_delay_ms",
    "DEPSIM_MAX_CONCURRENT_REQUESTS": "fetch.max_concurrent_requests",
    "DEPSIM_FETCH_TIMEOUT_MS": "fetch.fetch_timeout_ms",
    "DEPSIM_MAX_RETRY_ATTEMPTS": "fetch.max_retry_attempts",
    "DEPSIM_REFINEMENT_BUDGET_MS": "refinement.budget_ms",
    Constants.ENV_LIBRARIES_IO_API_KEY: "fetch.libraries_io_api_key",
}


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Read a YAML or JSON config file; returns ``{}`` when absent or invalid.

    An ``engine:`` top-level section is used when present, otherwise the
    whole document.
    """
    if not isinstance(path, str) or not path.strip():
        return {}
    if not os.path.isfile(path):
        logger.warning("Config file not found: %s", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (OSError, ValueError, yaml.YAMLError) as e:
        logger.error("Failed to load config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        return {}
    section = data.get("engine", data)
    return section if isinstance(section, dict) else {}


def coerce_value(text: str) -> Any:
    """Best-effort convert string to JSON/number/bool, else raw string."""
    s = str(text).strip()
    try:
        return json.loads(s)
    except ValueError:
        sl = s.lower()
        if sl == "true":
            return True
        if sl == "false":
            return False
        return s


def apply_overrides(config: EngineConfig, pairs: Iterable[str]) -> None:
    """Apply ``section.field=value`` strings; malformed entries are logged and skipped."""
    for item in pairs or []:
        if not isinstance(item, str) or "=" not in item:
            logger.warning("Ignoring malformed override (expected KEY=VALUE): %s", item)
            continue
        key, val = item.split("=", 1)
        try:
            config.set_value(key.strip(), coerce_value(val))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Ignoring override %s: %s", key.strip(), e)


def apply_env_overrides(config: EngineConfig, environ=None) -> None:
    environ = os.environ if environ is None else environ
    for env_name, dotted in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or not str(raw).strip():
            continue
        try:
            config.set_value(dotted, raw.strip())
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("Ignoring %s: %s", env_name, e)


def build_engine_config(args, environ=None) -> EngineConfig:
    """Assemble the ``EngineConfig`` for a CLI run."""
    config = EngineConfig.from_mapping(load_config_file(getattr(args, "CONFIG", None)))
    apply_env_overrides(config, environ)

    key = getattr(args, "LIBRARIES_IO_KEY", None)
    if key:
        config.fetch.libraries_io_api_key = key
    apply_overrides(config, getattr(args, "CONFIG_SET", []))
    return config


def resolve_data_dir(args, environ=None) -> str:
    environ = os.environ if environ is None else environ
    return (
        getattr(args, "DATA_DIR", None)
        or environ.get(Constants.ENV_DATA_DIR)
        or Constants.DEFAULT_DATA_DIR
    )
