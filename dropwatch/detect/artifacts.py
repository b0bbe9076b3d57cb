"""JSON model artifact files."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def write_json_atomic(path: Path, payload: dict) -> Path:
    """
    Replace `path` with `payload` as JSON.

    The file is written next to its destination and renamed over it, so
    readers see either the old or the new artifact, never a partial one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


def load_json(path: Path) -> Optional[dict]:
    """Load a JSON artifact, or None if it is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load artifact {path}: {e}")
        return None
