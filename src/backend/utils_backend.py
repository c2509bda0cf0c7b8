"""
Backend utility functions
"""
import os
import json
import logging
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)

def save_json(data: dict, filepath: str, indent: int = 2) -> None:
    """
    Save dictionary as JSON file (raises OSError on failure)
    """
    directory = os.path.dirname(filepath)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = filepath + ".tmp"
    with open(tmp_path, 'w') as f:
        json.dump(data, f, indent=indent, default=str)
    os.replace(tmp_path, filepath)

def load_json(filepath: str) -> Optional[Dict]:
    """
    Load JSON file as dictionary
    """
    try:
        with open(filepath, 'r') as f:
            return json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        logger.warning("Failed to load JSON from %s: %s", filepath, e)
        return None

def log_to_fallback(violation_data: dict, fallback_path: str = "output/logs/fallback.json") -> bool:
    """
    Fallback JSON logger when the record cannot be written to its folder
    """
    try:
        directory = os.path.dirname(fallback_path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        # Load existing logs
        logs = load_json(fallback_path) if os.path.exists(fallback_path) else None
        if not isinstance(logs, list):
            logs = []

        entry = dict(violation_data)
        entry.setdefault("logged_at", datetime.now().isoformat())
        logs.append(entry)

        with open(fallback_path, 'w') as f:
            json.dump(logs, f, indent=2, default=str)

        logger.warning("⚠️  Fallback: logged violation for %s", entry.get("vehicle_number", "UNKNOWN"))
        return True

    except OSError as e:
        logger.error("❌ Fallback logging failed: %s", e)
        return False

def sanitize_filename(filename: str) -> str:
    """
    Remove dangerous characters from filename
    """
    # Remove path separators and dangerous characters
    dangerous_chars = ['/', '\\', '..', '<', '>', ':', '"', '|', '?', '*']
    for char in dangerous_chars:
        filename = filename.replace(char, '_')
    return filename
