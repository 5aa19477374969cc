import asyncio
import json
import os
import shutil
import tempfile
import logging
from pathlib import Path
from typing import Any

__all__ = [
    "ensure_dir",
    "read_json_safe",
    "atomic_write_json",
    "atomic_write_json_async",
]

logger = logging.getLogger(__name__)

_write_lock: asyncio.Lock | None = None
_write_lock_loop: asyncio.AbstractEventLoop | None = None


def ensure_dir(path: str | os.PathLike[str]) -> None:
    """Ensure that ``path`` exists as a directory."""
    Path(path).mkdir(parents=True, exist_ok=True)


def _load(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def read_json_safe(path: str | os.PathLike[str], default: Any = None) -> Any:
    """Read JSON data from ``path``.

    If the file is missing or corrupted, attempt to read from ``path`` with
    ``.bak`` appended. Returns ``default`` (an empty dict when omitted) when
    neither copy can be decoded.
    """
    if default is None:
        default = {}
    p = Path(path)
    for candidate in (p, p.with_suffix(p.suffix + ".bak")):
        try:
            return _load(candidate)
        except FileNotFoundError:
            logger.debug("JSON file %s not found", candidate)
        except json.JSONDecodeError:
            logger.warning("JSON file %s is corrupted", candidate)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Error reading %s: %s", candidate, e)
    return default


def atomic_write_json(path: str | os.PathLike[str], data: Any) -> None:
    """Atomically write ``data`` to ``path`` and keep a ``.bak`` backup.

    The payload goes to a temporary file in the destination directory, is
    fsynced, then renamed over ``path``; a crash never leaves a truncated
    file behind. Raises :class:`OSError` when the write fails.

    This function blocks; use :func:`atomic_write_json_async` in async code.
    """
    dest = Path(path)
    ensure_dir(dest.parent)
    backup = dest.with_suffix(dest.suffix + ".bak")

    fd, tmp_path = tempfile.mkstemp(dir=str(dest.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
            f.flush()
            os.fsync(f.fileno())
        if dest.exists():
            try:
                shutil.copy2(dest, backup)
            except OSError:
                logger.exception("Failed to rotate backup for %s", dest)
        os.replace(tmp_path, dest)
    finally:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass


async def atomic_write_json_async(path: str | os.PathLike[str], data: Any) -> None:
    """Asynchronously write JSON data using :func:`atomic_write_json`.

    The write is executed in a thread and serialized with an event-loop-aware
    lock to avoid concurrent writes across different loops.
    """
    global _write_lock, _write_lock_loop
    loop = asyncio.get_running_loop()
    if _write_lock is None or _write_lock_loop is not loop:
        _write_lock = asyncio.Lock()
        _write_lock_loop = loop
    async with _write_lock:
        await asyncio.to_thread(atomic_write_json, path, data)
