# metrocard/utils/config.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict
from dotenv import load_dotenv

# Load environment once
load_dotenv()

ROOT_DIR = Path(os.getcwd())
STATE_DIR = ROOT_DIR / ".metrocard"
LOGS_DIR = Path(os.getenv("LOG_DIR", str(STATE_DIR / "logs")))

DEFAULT_DATA_FILE = "./data/cards.json"
DEFAULT_TIMEOUT_MINUTES = 210
DEFAULT_CHECK_INTERVAL_S = 60
TOKEN_PLACEHOLDER = "your_bot_token_here"

def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def data_file() -> Path:
    return Path(os.getenv("DATA_FILE") or DEFAULT_DATA_FILE)

def ensure_dirs() -> None:
    for d in (STATE_DIR, LOGS_DIR, data_file().parent):
        d.mkdir(parents=True, exist_ok=True)

def get_config() -> Dict[str, Any]:
    """
    Centralized accessor for common paths & settings.
    """
    ensure_dirs()
    return {
        "BOT_TOKEN": os.getenv("BOT_TOKEN", ""),
        "DATA_FILE": str(data_file()),
        "CHECKOUT_TIMEOUT_MINUTES": _int_env("CHECKOUT_TIMEOUT_MINUTES", DEFAULT_TIMEOUT_MINUTES),
        "REMINDER_CHECK_INTERVAL_S": _int_env("REMINDER_CHECK_INTERVAL_S", DEFAULT_CHECK_INTERVAL_S),
        "TIMEZONE": os.getenv("TIMEZONE", "").strip(),
        "LOGS_DIR": str(LOGS_DIR),
        "API_HOST": os.getenv("API_HOST", "127.0.0.1"),
        "API_PORT": _int_env("API_PORT", 8000),
    }
