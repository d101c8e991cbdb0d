import os
import json
import logging

logger = logging.getLogger(__name__)

SETTINGS_FILE = os.path.join(os.getcwd(), "settings.json")
DEFAULT_SETTINGS = {
    "backup_on_save": True,
    "debug_preview_bytes": 4096,
    "export_directory": "exported",
    "log_level": "INFO",
}


def load_settings(path=None):
    path = path or SETTINGS_FILE
    if os.path.exists(path):
        try:
            with open(path, "r") as f:
                settings = json.load(f)
            if not isinstance(settings, dict):
                raise ValueError("settings root must be an object")
            # Ensure all default keys are present
            for key, value in DEFAULT_SETTINGS.items():
                settings.setdefault(key, value)
            return settings
        except (IOError, ValueError) as e:
            logger.error("Error loading settings from %s: %s", path, e)
    return DEFAULT_SETTINGS.copy()


def save_settings(settings, path=None):
    path = path or SETTINGS_FILE
    try:
        with open(path, "w") as f:
            json.dump(settings, f, indent=4)
    except IOError as e:
        logger.error("Error saving settings to %s: %s", path, e)
