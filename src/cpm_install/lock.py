"""Advisory file locking for shared config files.

Serializes read-modify-write of files such as ~/.claude.json or
~/.cursor/mcp.json across concurrent invocations of this tool.

The lock is a marker file ``<target>.lock`` created with exclusive-create
semantics; its content is the acquisition time in epoch milliseconds. A
marker older than the staleness threshold is treated as abandoned by a
crashed process and removed. Only cooperating instances of this tool honour
it - it is not an OS-level lock.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator
from collections.abc import Awaitable
from collections.abc import Callable
from contextlib import asynccontextmanager
from pathlib import Path

from .exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

LOCK_STALE_SECONDS = 10.0
LOCK_RETRY_SECONDS = 0.1
LOCK_MAX_RETRIES = 50


def lock_path_for(file_path: Path) -> Path:
    """Marker path for ``file_path``."""
    return file_path.with_name(file_path.name + ".lock")


def _now_ms() -> int:
    return int(time.time() * 1000)


def _try_create(lock_path: Path) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w") as f:
        f.write(str(_now_ms()))
    return True


def _remove(lock_path: Path) -> None:
    try:
        lock_path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug(f"Could not remove lock {lock_path}: {e}")


def _is_stale(lock_path: Path, stale_after: float) -> bool:
    """
    True if the marker is older than ``stale_after``.

    Age comes from the timestamp inside the marker. An empty or garbled
    marker may belong to a holder that has not finished writing it, so its
    age comes from the file's mtime instead.
    """
    try:
        content = lock_path.read_text().strip()
        locked_at_ms = int(content)
    except FileNotFoundError:
        # Released between our create attempt and this read
        return False
    except (OSError, ValueError):
        try:
            locked_at_ms = int(lock_path.stat().st_mtime * 1000)
        except OSError:
            return False

    return _now_ms() - locked_at_ms > stale_after * 1000


async def acquire_lock(
    file_path: Path,
    *,
    stale_after: float = LOCK_STALE_SECONDS,
    retry_interval: float = LOCK_RETRY_SECONDS,
    max_retries: int = LOCK_MAX_RETRIES,
) -> Callable[[], Awaitable[None]]:
    """
    Acquire the advisory lock for ``file_path``.

    Args:
        file_path: File being protected (the marker goes next to it)
        stale_after: Seconds after which an existing marker is considered abandoned
        retry_interval: Seconds to wait between attempts while the lock is held
        max_retries: Attempts before giving up

    Returns:
        Async release function (removes the marker, best-effort)

    Raises:
        LockTimeoutError: If the lock is still held after ``max_retries`` attempts
    """
    lock_path = lock_path_for(file_path)

    for _ in range(max_retries):
        if _try_create(lock_path):
            logger.debug(f"Acquired lock {lock_path}")

            async def release() -> None:
                _remove(lock_path)
                logger.debug(f"Released lock {lock_path}")

            return release

        if _is_stale(lock_path, stale_after):
            logger.warning(f"Removing stale lock {lock_path}")
            _remove(lock_path)
            continue

        await asyncio.sleep(retry_interval)

    raise LockTimeoutError(
        f"Could not acquire lock for {file_path} after {max_retries} retries",
        context={"file_path": str(file_path), "lock_path": str(lock_path)},
    )


@asynccontextmanager
async def file_lock(
    file_path: Path,
    *,
    stale_after: float = LOCK_STALE_SECONDS,
    retry_interval: float = LOCK_RETRY_SECONDS,
    max_retries: int = LOCK_MAX_RETRIES,
) -> AsyncIterator[None]:
    """
    Hold the advisory lock on ``file_path`` for the duration of the block.

    The marker is removed on every exit path, including exceptions.

    Example:
        >>> async with file_lock(Path.home() / ".claude.json"):
        ...     config = json.loads(path.read_text())
        ...     path.write_text(json.dumps(merge(config)))
    """
    release = await acquire_lock(
        file_path,
        stale_after=stale_after,
        retry_interval=retry_interval,
        max_retries=max_retries,
    )
    try:
        yield
    finally:
        await release()
