from __future__ import annotations

import os
from pathlib import Path
from types import TracebackType

from loguru import logger


class AlreadyRunningError(Exception):
    """Another live process holds the pid file."""

    def __init__(self, path: Path, pid: int) -> None:
        super().__init__(f"{path} is held by running process {pid}")
        self.path = path
        self.pid = pid


def _pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except (OSError, OverflowError):
        return False
    return True


class PidFile:
    """Marks a data directory as owned by one long-running process.

    A file left behind by a process that has exited is treated as free.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def owner(self) -> int | None:
        """Pid of the live process holding the file, if any."""
        try:
            pid = int(self.path.read_text("utf-8").strip())
        except (OSError, ValueError):
            return None
        return pid if _pid_alive(pid) else None

    def is_held(self) -> bool:
        return self.owner() is not None

    def acquire(self) -> None:
        owner = self.owner()
        if owner is not None and owner != os.getpid():
            raise AlreadyRunningError(self.path, owner)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{os.getpid()}\n", "utf-8")
        logger.bind(path=str(self.path)).debug("Acquired {}", self.path)

    def release(self) -> None:
        if self.owner() == os.getpid():
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> PidFile:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
