"""reqstash core - config loading, .env loading, variable resolution, logging."""

import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path

import yaml
from dotenv import dotenv_values

GLOBAL_DIR = Path.home() / ".reqstash"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".reqstash.yaml",
    ".reqstash.yml",
    "reqstash.yaml",
    "reqstash.yml",
]

DEFAULT_STORE_FILE = "saved_requests.json"
DEFAULT_TIMEOUT = 30

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (no fallthrough if missing)
      2. .reqstash.yaml (variants) in CWD
      3. ~/.reqstash/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so the store path can be
    resolved relative to the config file.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def resolve_store_path(cli_override: str | None, config: dict) -> Path:
    """Pick the document file.

    Resolution order:
      1. --store flag (absolute or relative to CWD)
      2. store_file from config defaults (relative to the config file)
      3. ./saved_requests.json
    """
    if cli_override:
        return Path(cli_override)
    store_file = config.get("defaults", {}).get("store_file")
    config_dir = config.get("_config_dir")
    if store_file:
        p = Path(store_file)
        if not p.is_absolute() and config_dir:
            p = Path(config_dir) / p
        return p
    return Path(DEFAULT_STORE_FILE)


def load_env(env_file: str | None, base_dir: str = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    .env values take precedence over os.environ for the names they define.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_variable_value(value: str, env: Mapping[str, str] | None = None) -> str:
    """Resolve a variable's stored value to its effective value.

    "$NAME" looks NAME up in env (os.environ by default). An unset or empty
    NAME leaves "$NAME" as is so the gap stays visible in the request.
    """
    if not value.startswith("$"):
        return value
    if env is None:
        env = os.environ
    found = env.get(value[1:])
    if found:
        return found
    return value


def resolve_timeout(*sources, default=DEFAULT_TIMEOUT):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return int(t)
    return default


def configure_logging(level: str | int | None = None) -> None:
    """Send log records to stderr. Level defaults to WARNING."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.WARNING
    logging.basicConfig(
        level=level or logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
