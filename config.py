# config.py
"""Runtime configuration, read from the environment (and a .env file if present)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_MAX_IMAGES = 10
DEFAULT_HOMEWORK_KEYWORD = "praca domowa"
DEFAULT_HOMEWORK_FILE_NAME = "Praca Domowa.pdf"
DEFAULT_FETCH_TIMEOUT = 30.0


class ConfigError(ValueError):
    pass


@dataclass
class MathifyConfig:
    appdata_dir: Path = BASE_DIR / "appdata"
    max_images: int = DEFAULT_MAX_IMAGES
    homework_keyword: str = DEFAULT_HOMEWORK_KEYWORD
    homework_file_name: str = DEFAULT_HOMEWORK_FILE_NAME
    fetch_timeout: float = DEFAULT_FETCH_TIMEOUT
    log_level: str = "INFO"


def _int_setting(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float_setting(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_config(env: Optional[Mapping[str, str]] = None) -> MathifyConfig:
    """
    Build a MathifyConfig from `env`. When `env` is None, a .env file is loaded
    into the process environment first and os.environ is used.
    """
    if env is None:
        load_dotenv(find_dotenv(usecwd=True), override=True)
        env = os.environ

    appdata = env.get("MATHIFY_APPDATA_DIR")
    max_images = _int_setting(env, "MATHIFY_MAX_IMAGES", DEFAULT_MAX_IMAGES)
    if max_images < 1:
        raise ConfigError("MATHIFY_MAX_IMAGES must be at least 1")
    fetch_timeout = _float_setting(env, "MATHIFY_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT)
    if fetch_timeout <= 0:
        raise ConfigError("MATHIFY_FETCH_TIMEOUT must be positive")

    return MathifyConfig(
        appdata_dir=Path(appdata).expanduser() if appdata else BASE_DIR / "appdata",
        max_images=max_images,
        homework_keyword=(env.get("MATHIFY_HOMEWORK_KEYWORD") or DEFAULT_HOMEWORK_KEYWORD).strip().lower(),
        homework_file_name=env.get("MATHIFY_HOMEWORK_FILE_NAME") or DEFAULT_HOMEWORK_FILE_NAME,
        fetch_timeout=fetch_timeout,
        log_level=(env.get("MATHIFY_LOG_LEVEL") or "INFO").upper(),
    )
