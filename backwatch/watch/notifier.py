"""
Filesystem change notifiers.

Raw change detection is delegated to an external capability:
- InotifyNotifier: ``inotifywait`` from inotify-tools (Linux)
- FswatchNotifier: ``fswatch`` (macOS, BSD)
- WatchdogNotifier: the ``watchdog`` library's native observer

Every notifier exposes ``check_available()`` and a blocking
``watch(path, recursive, on_event, cancel)`` that returns once the
``cancel`` event is set, releasing its subprocess or observer.
"""

from __future__ import annotations

import collections
import enum
import logging
import shutil
import subprocess
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# How often blocking loops re-check cancellation (seconds)
POLL_INTERVAL = 0.2

# Notifier stderr lines kept for the error raised on an unexpected exit
STDERR_TAIL_LINES = 20


class ChangeKind(enum.Enum):
    CREATE = 'create'
    MODIFY = 'modify'
    DELETE = 'delete'
    MOVE = 'move'


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem change reported by a notifier."""
    path: str
    kind: ChangeKind
    is_directory: bool = False


class NotifierUnavailable(Exception):
    """Raised when no change-notification capability can be used."""
    pass


class NotifierError(Exception):
    """Raised when a running notifier fails."""
    pass


class Notifier:
    """Base class for change notifiers."""

    name = 'notifier'

    def check_available(self) -> None:
        """Raise NotifierUnavailable if this notifier cannot run here."""

    def watch(
        self,
        path: str,
        recursive: bool,
        on_event: Callable[[ChangeEvent], None],
        cancel: threading.Event,
    ) -> None:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Subprocess-based notifiers
# ---------------------------------------------------------------------------

class CommandNotifier(Notifier):
    """Runs a notifier command and parses one event per output line."""

    command = ''

    def check_available(self) -> None:
        if shutil.which(self.command) is None:
            raise NotifierUnavailable(f"'{self.command}' is not installed")

    def build_args(self, path: str, recursive: bool) -> List[str]:
        raise NotImplementedError

    def parse_line(self, line: str) -> Optional[ChangeEvent]:
        raise NotImplementedError

    def watch(self, path, recursive, on_event, cancel):
        self.check_available()
        args = self.build_args(path, recursive)
        logger.debug("Starting notifier: %s", ' '.join(args))

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            raise NotifierError(f"Failed to start {self.command}: {e}") from e

        reaper = threading.Thread(
            target=_terminate_on_cancel,
            args=(process, cancel),
            name=f"{self.command}-reaper",
            daemon=True,
        )
        reaper.start()

        stderr_tail = collections.deque(maxlen=STDERR_TAIL_LINES)
        drainer = threading.Thread(
            target=_drain_stderr,
            args=(process, self.command, stderr_tail),
            name=f"{self.command}-stderr",
            daemon=True,
        )
        drainer.start()

        try:
            for line in process.stdout:
                event = self.parse_line(line.rstrip('\n'))
                if event is None:
                    continue
                try:
                    on_event(event)
                except Exception:
                    logger.exception("Change callback failed for %s", event.path)
        finally:
            if process.poll() is None:
                process.terminate()
            returncode = process.wait()
            reaper.join()
            drainer.join(timeout=5)

        if cancel.is_set():
            return

        stderr = '\n'.join(stderr_tail)
        raise NotifierError(f"{self.command} exited with status {returncode}: {stderr}")


def _drain_stderr(process: subprocess.Popen, command: str, tail: collections.deque):
    """Log notifier warnings while it runs, keeping the last few lines."""
    for line in process.stderr:
        line = line.rstrip('\n')
        if line:
            logger.warning("%s: %s", command, line)
            tail.append(line)


def _terminate_on_cancel(process: subprocess.Popen, cancel: threading.Event):
    """Terminate the notifier process once cancelled; exit if it dies first."""
    while not cancel.wait(POLL_INTERVAL):
        if process.poll() is not None:
            return

    if process.poll() is None:
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()


_INOTIFY_KINDS = {
    'CREATE': ChangeKind.CREATE,
    'MODIFY': ChangeKind.MODIFY,
    'CLOSE_WRITE': ChangeKind.MODIFY,
    'DELETE': ChangeKind.DELETE,
    'DELETE_SELF': ChangeKind.DELETE,
    'MOVED_FROM': ChangeKind.MOVE,
    'MOVED_TO': ChangeKind.MOVE,
    'MOVE_SELF': ChangeKind.MOVE,
}


class InotifyNotifier(CommandNotifier):
    """inotifywait in monitor mode, one ``<path> <EVENTS>`` line per change."""

    name = 'inotifywait'
    command = 'inotifywait'

    def build_args(self, path, recursive):
        args = [
            self.command,
            '-m',
            '-q',
            '--format', '%w%f %e',
            '-e', 'create,modify,delete,move',
        ]
        if recursive:
            args.append('-r')
        args.append(path)
        return args

    def parse_line(self, line):
        # Paths may contain spaces, event flags never do
        parts = line.rsplit(' ', 1)
        if len(parts) != 2 or not parts[0]:
            return None

        path, flags = parts
        flag_list = flags.split(',')
        for flag in flag_list:
            kind = _INOTIFY_KINDS.get(flag)
            if kind is not None:
                return ChangeEvent(path=path, kind=kind, is_directory='ISDIR' in flag_list)
        return None


_FSWATCH_KINDS = {
    'Created': ChangeKind.CREATE,
    'Updated': ChangeKind.MODIFY,
    'OwnerModified': ChangeKind.MODIFY,
    'AttributeModified': ChangeKind.MODIFY,
    'Removed': ChangeKind.DELETE,
    'Renamed': ChangeKind.MOVE,
    'MovedFrom': ChangeKind.MOVE,
    'MovedTo': ChangeKind.MOVE,
}


class FswatchNotifier(CommandNotifier):
    """fswatch with event flags, one ``<path> <Flag,Flag>`` line per change."""

    name = 'fswatch'
    command = 'fswatch'

    def build_args(self, path, recursive):
        args = [
            self.command,
            '--event-flags',
            '--event-flag-separator', ',',
            '--format', '%p %f',
        ]
        if recursive:
            args.append('-r')
        args.append(path)
        return args

    def parse_line(self, line):
        parts = line.rsplit(' ', 1)
        if len(parts) != 2 or not parts[0]:
            return None

        path, flags = parts
        flag_list = flags.split(',')
        for flag in flag_list:
            kind = _FSWATCH_KINDS.get(flag)
            if kind is not None:
                return ChangeEvent(path=path, kind=kind, is_directory='IsDir' in flag_list)
        return None


# ---------------------------------------------------------------------------
# watchdog
# ---------------------------------------------------------------------------

_WATCHDOG_KINDS = {
    'created': ChangeKind.CREATE,
    'modified': ChangeKind.MODIFY,
    'deleted': ChangeKind.DELETE,
    'moved': ChangeKind.MOVE,
}


class _ChangeHandler(FileSystemEventHandler):
    """Translates watchdog events into ChangeEvent callbacks."""

    def __init__(self, callback: Callable[[ChangeEvent], None]) -> None:
        super().__init__()
        self._callback = callback

    def on_any_event(self, event) -> None:
        kind = _WATCHDOG_KINDS.get(event.event_type)
        if kind is None:
            return

        # For moved events, use the destination path
        path = getattr(event, 'dest_path', None) or event.src_path
        if isinstance(path, bytes):
            path = path.decode()

        change = ChangeEvent(path=path, kind=kind, is_directory=event.is_directory)
        try:
            self._callback(change)
        except Exception:
            logger.exception("Change callback failed for %s", change.path)


class WatchdogNotifier(Notifier):
    """In-process notifier using the watchdog library's native observer."""

    name = 'watchdog'

    def watch(self, path, recursive, on_event, cancel):
        observer = Observer()
        observer.schedule(_ChangeHandler(on_event), path, recursive=recursive)

        try:
            observer.start()
        except OSError as e:
            raise NotifierError(f"Failed to start watchdog observer: {e}") from e

        try:
            while not cancel.wait(POLL_INTERVAL):
                if not observer.is_alive():
                    raise NotifierError("watchdog observer stopped unexpectedly")
        finally:
            observer.stop()
            observer.join()


NOTIFIERS = {
    'inotifywait': InotifyNotifier,
    'fswatch': FswatchNotifier,
    'watchdog': WatchdogNotifier,
}


def create_notifier(backend: str = 'auto') -> Notifier:
    """
    Create a notifier.

    Args:
        backend: 'inotifywait', 'fswatch', 'watchdog' or 'auto' (first available, in that order)

    Raises:
        NotifierUnavailable: If the requested backend (or, for 'auto', every backend) is unusable
        ValueError: If the backend name is unknown
    """
    if backend == 'auto':
        reasons = []
        for notifier_class in NOTIFIERS.values():
            notifier = notifier_class()
            try:
                notifier.check_available()
            except NotifierUnavailable as e:
                reasons.append(str(e))
                continue
            logger.info("Using %s for change notification", notifier.name)
            return notifier
        raise NotifierUnavailable(f"No change notifier available: {'; '.join(reasons)}")

    if backend not in NOTIFIERS:
        raise ValueError(f"Unknown notifier backend: {backend}. Valid options: {['auto'] + list(NOTIFIERS)}")

    notifier = NOTIFIERS[backend]()
    notifier.check_available()
    return notifier
