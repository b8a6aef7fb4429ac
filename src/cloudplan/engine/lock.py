"""Local state locking."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import IO, TYPE_CHECKING

from cloudplan.engine.errors import StateLockError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.1


class StateLock:
    """Exclusive advisory lock on ``<state_path>.lock``.

    With ``timeout=None`` acquisition blocks until the lock is free;
    otherwise it gives up with :class:`StateLockError` after *timeout*
    seconds.
    """

    def __init__(self, state_path: Path, *, timeout: float | None = None) -> None:
        self._lock_path = Path(str(state_path) + ".lock")
        self._timeout = timeout
        self._file: IO[str] | None = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> StateLock:
        if fcntl is None:  # pragma: no cover
            raise StateLockError("State locking is not supported on this platform")

        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except BaseException:
            self._file.close()
            self._file = None
            raise
        logger.debug("Acquired state lock %s", self._lock_path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        finally:
            self._file.close()
            self._file = None
        logger.debug("Released state lock %s", self._lock_path)

    def _acquire(self) -> None:
        assert self._file is not None
        if self._timeout is None:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX)
            except OSError as e:
                raise StateLockError(str(e)) from e
            return

        deadline = time.monotonic() + self._timeout
        while True:
            try:
                fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    raise StateLockError(
                        f"Timed out after {self._timeout}s waiting for {self._lock_path}"
                    ) from None
                time.sleep(_POLL_INTERVAL)
            except OSError as e:
                raise StateLockError(str(e)) from e
