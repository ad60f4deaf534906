from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from core.errors import PersistenceFailure


logger = logging.getLogger("taskmaster.autosave")


class AutoSaver:
    """Debounced, serialized writer.

    ``schedule()`` (re)arms a quiet-period timer; only the last request in a
    burst triggers a write. Writes never overlap: a write requested while
    another is running waits for it to finish.
    """

    def __init__(
        self,
        writer: Callable[[], None],
        *,
        delay: float = 2.0,
        on_error: Optional[Callable[[PersistenceFailure], None]] = None,
    ) -> None:
        self._writer = writer
        self.delay = delay
        self._on_error = on_error
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._dirty = False
        self.last_error: Optional[PersistenceFailure] = None
        self.writes = 0

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        with self._timer_lock:
            return self._timer is not None

    def mark_dirty(self) -> None:
        """Record unsaved changes without arming the timer."""
        self._dirty = True

    def schedule(self) -> None:
        with self._timer_lock:
            self._dirty = True
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def flush(self) -> bool:
        """Write now if anything is unsaved. Raises :class:`PersistenceFailure`."""
        self.cancel()
        return self._write()

    def _fire(self) -> None:
        with self._timer_lock:
            self._timer = None
        try:
            self._write()
        except PersistenceFailure as exc:
            logger.error("Auto-save failed: %s", exc)
            if self._on_error is not None:
                self._on_error(exc)
        except Exception:
            logger.exception("Auto-save writer crashed; changes stay unsaved")

    def _write(self) -> bool:
        with self._write_lock:
            if not self._dirty:
                return False
            self._dirty = False
            try:
                self._writer()
            except PersistenceFailure as exc:
                self._dirty = True
                self.last_error = exc
                raise
            except Exception:
                self._dirty = True
                raise
            self.last_error = None
            self.writes += 1
            logger.debug("Auto-saved (write #%d)", self.writes)
            return True


__all__ = ["AutoSaver"]
