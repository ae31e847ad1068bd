"""
File helpers for the local document store and import/export.

A store file is rewritten whole on every commit, so writes go to a temp
file in the same directory, are fsynced, then renamed over the target.
"""

import json
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

from ..exceptions import StorageIOError


async def ensure_directory(path: Path) -> None:
    try:
        await aiofiles.os.makedirs(path, exist_ok=True)
    except OSError as e:
        raise StorageIOError("create_directory", str(path), e) from e


async def read_text(path: Path) -> str:
    """Read a whole UTF-8 text file.

    Raises:
        StorageIOError: If the file is missing or unreadable
    """
    try:
        async with aiofiles.open(path, encoding="utf-8") as f:
            return await f.read()
    except OSError as e:
        raise StorageIOError("read_text", str(path), e) from e


async def read_json(path: Path) -> Any | None:
    """Parse a JSON file.

    Returns:
        The decoded value, or None if the file is missing or blank
    """
    if not await aiofiles.os.path.exists(path):
        return None
    content = await read_text(path)
    if not content.strip():
        return None
    try:
        return json.loads(content)
    except json.JSONDecodeError as e:
        raise StorageIOError("parse_json", str(path), e) from e


async def write_json_atomic(path: Path, data: Any) -> None:
    """Serialize ``data`` to ``path`` via temp file, fsync and rename."""
    await ensure_directory(path.parent)

    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
    os.close(fd)
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, indent=2, default=_encode_extra))
            await f.flush()
            os.fsync(f.fileno())
        await aiofiles.os.replace(temp_path, path)
    except (OSError, TypeError, ValueError) as e:
        try:
            await aiofiles.os.remove(temp_path)
        except OSError:
            pass
        raise StorageIOError("write_json", str(path), e) from e


def _encode_extra(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return obj.isoformat()
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
