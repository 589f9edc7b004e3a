"""Local disk storage for uploaded CSV files."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import BinaryIO

from power_importer.core.config import get_settings

logger = logging.getLogger(__name__)


def uploads_dir() -> Path:
    # Config validator resolves and creates the directory
    return Path(get_settings().uploads_dir)


def save_upload(
    file_obj: BinaryIO, original_name: str | None = None, directory: Path | None = None
) -> Path:
    """Persist an uploaded CSV under a random name and return its absolute path."""
    target_dir = directory or uploads_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(original_name or "upload.csv").suffix or ".csv"
    target_path = (target_dir / f"{uuid.uuid4()}{suffix}").resolve()
    file_obj.seek(0)
    with target_path.open("wb") as destination:
        shutil.copyfileobj(file_obj, destination)
    logger.info(f"Stored upload '{original_name}' at {target_path}")
    return target_path


def delete_upload(path: str | Path) -> bool:
    """Remove a stored upload; returns False when the file could not be removed."""
    target = Path(path).resolve()
    try:
        target.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to delete upload {target}: {e}")
        return False
    return True
