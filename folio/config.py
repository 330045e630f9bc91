"""Central configuration loader for folio."""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Project root is the parent of the folio/ directory
PROJECT_ROOT = Path(__file__).resolve().parent.parent

load_dotenv(PROJECT_ROOT / ".env")


def load_settings() -> dict:
    """Load settings from configs/settings.yaml (empty dict if absent)."""
    settings_path = Path(os.getenv("FOLIO_SETTINGS", PROJECT_ROOT / "configs" / "settings.yaml"))
    if not settings_path.exists():
        return {}
    with open(settings_path) as f:
        return yaml.safe_load(f) or {}


SETTINGS = load_settings()


def section(name: str) -> dict:
    """Return a top-level settings section, or an empty dict."""
    value = SETTINGS.get(name)
    return value if isinstance(value, dict) else {}


# --- API Keys ---
class Keys:
    TWELVE_DATA = os.getenv("TWELVE_DATA_API_KEY", "")


# --- Paths ---
class Paths:
    ROOT = PROJECT_ROOT
    DATA_CACHE = PROJECT_ROOT / "data" / "cache"
