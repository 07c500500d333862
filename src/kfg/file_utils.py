"""Atomic file writes and reads for the file-backed drivers."""

from pathlib import Path

import aiofiles
import aiofiles.os
from loguru import logger


def _temp_path(path: Path) -> Path:
    return path.with_name(f".{path.name}.tmp")


def write_file_atomic(path: Path | str, content: str) -> None:
    """Write ``content`` to a temp file next to ``path`` and rename it into place.

    Raises:
        OSError: If the write or the rename fails. The temp file is removed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path(path)
    try:
        temp_path.write_text(content, encoding="utf-8")
        temp_path.replace(path)
        logger.debug("Wrote file atomically", path=str(path), content_length=len(content))
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        logger.error("Failed to write file", path=str(path), error=str(e))
        raise


async def awrite_file_atomic(path: Path | str, content: str) -> None:
    """Async variant of ``write_file_atomic`` using aiofiles."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = _temp_path(path)
    try:
        async with aiofiles.open(temp_path, mode="w", encoding="utf-8") as f:
            await f.write(content)
        await aiofiles.os.replace(temp_path, path)
        logger.debug("Wrote file atomically", path=str(path), content_length=len(content))
    except OSError as e:
        temp_path.unlink(missing_ok=True)
        logger.error("Failed to write file", path=str(path), error=str(e))
        raise


def read_file(path: Path | str) -> str | None:
    """Return the file's text, or None if it does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")


async def aread_file(path: Path | str) -> str | None:
    path = Path(path)
    if not await aiofiles.os.path.exists(path):
        return None
    async with aiofiles.open(path, mode="r", encoding="utf-8") as f:
        return await f.read()
