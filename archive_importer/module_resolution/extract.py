"""Write resolved modules to disk for debuggers and other file-based tools."""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import ExtractionError

logger = logging.getLogger(__name__)


def extraction_target(root: Path, relative_path: str, version: str) -> Path:
    """Compute where a module is extracted to.

    Layout: <root>/[<version>/]<relative_path>
    """
    if version:
        return root / version / relative_path
    return root / relative_path


def extract_module(root: Path, relative_path: str, version: str, content: bytes) -> Path:
    """Write one module below the extraction root.

    Args:
        root: Extraction root directory
        relative_path: Module path relative to the archive root
        version: Archive version token, may be empty
        content: Module bytes

    Returns:
        Path of the written file

    Raises:
        ExtractionError: Directory or file could not be written
    """
    target = extraction_target(root, relative_path, version)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as e:
        raise ExtractionError(f"Couldn't save {target}: {e}") from e

    logger.debug(f"[archive:extract] {relative_path} -> {target}")
    return target
