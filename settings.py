import json
import os

from shared.models import DEFAULT_DIFFICULTY

# Settings management
SETTINGS_FILE = "settings.json"
DEFAULT_SETTINGS = {
    "db_file": "memory_game.db",
    "difficulty": DEFAULT_DIFFICULTY,
    "freshness_seconds": 24 * 60 * 60,
    "mismatch_delay_ms": 1000,
    "watch_interval": 1.0,
}


def load_settings(path=SETTINGS_FILE):
    """Load settings from settings.json, filling in defaults for missing keys."""
    settings = dict(DEFAULT_SETTINGS)
    if os.path.exists(path):
        try:
            with open(path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"Error reading {path}, using defaults: {e}")
            return settings
        if isinstance(data, dict):
            settings.update({k: v for k, v in data.items() if k in DEFAULT_SETTINGS})
    return settings


def save_settings(settings, path=SETTINGS_FILE):
    """Save settings to settings.json file."""
    with open(path, 'w') as f:
        json.dump(settings, f, indent=2)
