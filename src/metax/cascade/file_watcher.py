"""
Polling file watcher for cascade sources.

One WatchRegistration exists per watched path. A background thread compares
(mtime, size) signatures every poll interval and reports changed paths to a
callback. The callback runs on the watcher thread and must return quickly.
"""

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from ..interrupt_utils import handle_keyboard_interrupt_properly

DEFAULT_POLL_INTERVAL = 0.5

Signature = Optional[Tuple[int, int]]


def file_signature(path: Path) -> Signature:
    """Return (mtime_ns, size) for a file, or None if it cannot be stat'ed."""
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size)


@dataclass
class WatchRegistration:
    """A watched path and its last observed signature."""

    path: Path
    active: bool = True
    signature: Signature = None


class FileWatcher:
    """
    Watches a fixed set of files by polling.

    Registrations are created in the constructor and torn down by stop();
    no paths are added or removed while watching.

    Example usage:
        watcher = FileWatcher([Path("a.meta")], on_change=print)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        paths: Iterable[Path],
        on_change: Callable[[Path], None],
        poll_interval: float = DEFAULT_POLL_INTERVAL
    ):
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.registrations: List[WatchRegistration] = [
            WatchRegistration(path=Path(p), signature=file_signature(Path(p)))
            for p in paths
        ]
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the polling thread."""
        if self.is_running:
            return
        self._stop_event.clear()
        for registration in self.registrations:
            registration.active = True
        self._thread = threading.Thread(
            target=self._poll_loop, name="metax-file-watcher", daemon=True
        )
        self._thread.start()
        logging.info(f"Watching {len(self.registrations)} file(s) for changes")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and deactivate all registrations."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        for registration in self.registrations:
            registration.active = False

    def poll_once(self) -> List[Path]:
        """
        Check every active registration once.

        Returns:
            Paths whose signature changed since the previous poll, in
            registration order
        """
        changed = []
        for registration in self.registrations:
            if not registration.active:
                continue
            signature = file_signature(registration.path)
            if signature != registration.signature:
                registration.signature = signature
                changed.append(registration.path)

        for path in changed:
            if file_signature(path) is None:
                logging.warning(f"Watched file {path} has disappeared")
            else:
                logging.info(f"File {path.name} has been changed")
            self.on_change(path)

        return changed

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.poll_once()
            except KeyboardInterrupt as ke:
                handle_keyboard_interrupt_properly(ke)
            except Exception as e:
                logging.error(f"File watcher error: {e}", exc_info=True)
