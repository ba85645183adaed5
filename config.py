from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping
from dotenv import dotenv_values

APP_DIR = Path(__file__).resolve().parent
ENV_FILE = APP_DIR / ".env"

# Local development defaults (lowest precedence)
DEFAULTS = {
    "DB_URL": "mysql+pymysql://localhost:3306/hms",
    "DB_USER": "root",
    "DB_PASSWORD": "",
    "DB_TIMEOUT": "10",
    "DB_ECHO": "",
    "HMS_PAGE_SIZE": "25",
}


@dataclass(frozen=True)
class Settings:
    db_url: str
    db_user: str
    db_password: str
    db_timeout: int = 10
    db_echo: bool = False
    page_size: int = 25


def _flag(s: str) -> bool:
    return s.strip().lower() in ("1", "true", "yes", "on")


def _positive_int(key: str, s: str) -> int:
    try:
        n = int(s)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {s!r}") from None
    if n <= 0:
        raise ValueError(f"{key} must be positive, got {n}")
    return n


def get_setting(key: str, file_values: Mapping[str, str | None], environ: Mapping[str, str]) -> str:
    """Process environment wins over the .env file, which wins over DEFAULTS.

    Blank values are treated as unset so an empty ``DB_URL=`` line does not
    shadow the default.
    """
    for source in (environ, file_values):
        v = source.get(key)
        if v is not None and v.strip():
            return v.strip()
    return DEFAULTS[key]


def load_settings(env_file: Path | str | None = ENV_FILE,
                  environ: Mapping[str, str] | None = None) -> Settings:
    environ = os.environ if environ is None else environ
    # dotenv_values reads the file without touching os.environ
    file_values = dotenv_values(env_file) if env_file and Path(env_file).is_file() else {}

    def get(key): return get_setting(key, file_values, environ)

    return Settings(
        db_url=get("DB_URL"),
        db_user=get("DB_USER"),
        db_password=get("DB_PASSWORD"),
        db_timeout=_positive_int("DB_TIMEOUT", get("DB_TIMEOUT")),
        db_echo=_flag(get("DB_ECHO")),
        page_size=_positive_int("HMS_PAGE_SIZE", get("HMS_PAGE_SIZE")),
    )
