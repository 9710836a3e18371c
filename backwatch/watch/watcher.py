"""
Change-coalescing watcher.

Turns the noisy stream of filesystem changes under one directory into a
bounded rate of backup runs:

- Debounce: every accepted change re-arms a timer; the backup is requested
  only once changes have been quiet for ``wait_after_changes`` seconds.
- Throttle: a debounce firing less than ``min_backup_interval`` seconds
  after the last successful backup started is dropped. It is not re-armed;
  the next accepted change schedules a new attempt.
- Serialization: requests go through a single-slot queue drained by one
  worker thread, so at most one backup runs per session.

States: IDLE -> PENDING_DEBOUNCE (change) -> IDLE (debounce fired) ->
EXECUTING (worker picked up the request) -> IDLE or PENDING_DEBOUNCE
(backup done). Any state -> STOPPED on stop().
"""

from __future__ import annotations

import enum
import fnmatch
import logging
import os
import queue
import threading
import time
from typing import Callable, Iterable, Optional

from .notifier import ChangeEvent, Notifier, NotifierError, create_notifier

logger = logging.getLogger(__name__)

DEFAULT_WAIT_AFTER_CHANGES = 5.0
DEFAULT_MIN_BACKUP_INTERVAL = 10.0

# How often the worker re-checks cancellation while idle (seconds)
_POLL_INTERVAL = 0.2

_TRIGGER_REQUEST = 'trigger'


class WatchError(Exception):
    """Raised when a directory cannot be watched."""
    pass


class WatcherState(enum.Enum):
    IDLE = 'idle'
    PENDING_DEBOUNCE = 'pending_debounce'
    EXECUTING = 'executing'
    STOPPED = 'stopped'


class WatchSession:
    """State of one active watch. Mutable fields are guarded by ``lock``."""

    def __init__(
        self,
        source_path: str,
        name: str,
        exclude_dirs: Iterable[str] = (),
        exclude_files: Iterable[str] = (),
    ) -> None:
        self.source_path = os.path.abspath(source_path)
        self._real_source_path = os.path.realpath(source_path)
        self.name = name
        self.exclude_dirs = tuple(exclude_dirs)
        self.exclude_files = tuple(exclude_files)

        self.last_trigger_time: Optional[float] = None
        self.pending_change = False
        self.debounce_deadline: Optional[float] = None
        self.state = WatcherState.IDLE

        self.lock = threading.Lock()
        self.cancelled = threading.Event()

    @classmethod
    def from_config(cls, config) -> 'WatchSession':
        return cls(
            config.source_path,
            config.name,
            exclude_dirs=config.exclude_dir_patterns,
            exclude_files=config.exclude_file_patterns,
        )

    def is_ignored(self, path: str) -> bool:
        """
        Whether a changed path is noise.

        First match wins: hidden or editor temp names (leading ``.`` or
        ``~``, trailing ``~``) anywhere below the source directory, then
        ``exclude_files`` against the file name, then ``exclude_dirs``
        against the name of the containing directory.
        """
        for component in self._relative_components(path):
            if _is_hidden_or_temp(component):
                return True

        base_name = os.path.basename(path)
        for pattern in self.exclude_files:
            if fnmatch.fnmatchcase(base_name, pattern):
                return True

        dir_name = os.path.basename(os.path.dirname(path))
        for pattern in self.exclude_dirs:
            if dir_name == pattern or fnmatch.fnmatchcase(dir_name, pattern):
                return True

        return False

    def _relative_components(self, path: str):
        # Notifiers may report either the given or the symlink-resolved path
        absolute = os.path.abspath(path)
        for root, candidate in ((self.source_path, absolute),
                                (self._real_source_path, os.path.realpath(absolute))):
            if candidate.startswith(root + os.sep):
                return candidate[len(root) + 1:].split(os.sep)
        return [os.path.basename(absolute)]

    def snapshot(self) -> dict:
        with self.lock:
            return {
                'name': self.name,
                'source_path': self.source_path,
                'state': self.state.value,
                'pending_change': self.pending_change,
                'last_trigger_time': self.last_trigger_time,
                'debounce_deadline': self.debounce_deadline,
            }


def _is_hidden_or_temp(name: str) -> bool:
    return bool(name) and (name[0] in '.~' or name.endswith('~'))


class Watcher:
    """
    Watches one session's directory and runs backups through ``trigger``.

    Args:
        session: The WatchSession to drive
        trigger: Callable running one backup for the session; raises on failure
        notifier: Change notifier (default: first available backend)
        wait_after_changes: Debounce delay in seconds
        min_backup_interval: Minimum seconds between the starts of two backups
        clock: Monotonic clock, injectable for tests
        timer_factory: threading.Timer compatible factory, injectable for tests
    """

    def __init__(
        self,
        session: WatchSession,
        trigger: Callable[[WatchSession], object],
        notifier: Optional[Notifier] = None,
        wait_after_changes: float = DEFAULT_WAIT_AFTER_CHANGES,
        min_backup_interval: float = DEFAULT_MIN_BACKUP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
        timer_factory=threading.Timer,
    ) -> None:
        self.session = session
        self.trigger = trigger
        self.notifier = notifier
        self.wait_after_changes = wait_after_changes
        self.min_backup_interval = min_backup_interval
        self._clock = clock
        self._timer_factory = timer_factory

        self._requests: queue.Queue = queue.Queue(maxsize=1)
        self._timer = None
        self._timer_generation = 0
        self._worker: Optional[threading.Thread] = None
        self._started = False

    @property
    def state(self) -> WatcherState:
        return self.session.state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Watch until stopped. Blocks the calling thread.

        Runs one baseline backup before consuming changes.

        Raises:
            WatchError: If the source directory is missing or the notifier fails
            NotifierUnavailable: If no change notifier can run (before any backup)
        """
        if self._started:
            raise WatchError(f"Watcher for '{self.session.name}' already started")
        self._started = True

        source = self.session.source_path
        if not os.path.isdir(source):
            raise WatchError(f"Directory to watch does not exist: {source}")

        notifier = self.notifier or create_notifier()
        notifier.check_available()
        self.notifier = notifier

        if self.session.cancelled.is_set():
            return

        logger.info("Watching %s for changes (backup '%s', %s)", source, self.session.name, notifier.name)

        self._perform_backup()

        self._worker = threading.Thread(
            target=self._trigger_loop,
            name=f"backwatch-trigger-{self.session.name}",
            daemon=True,
        )
        self._worker.start()

        try:
            notifier.watch(source, True, self.on_change, self.session.cancelled)
        except NotifierError as e:
            if not self.session.cancelled.is_set():
                raise WatchError(f"Watching {source} failed: {e}") from e
        finally:
            self.stop()
            # An in-flight backup is allowed to finish
            self._worker.join()

        logger.info("Stopped watching %s", source)

    def stop(self) -> None:
        """Stop the session. Idempotent and safe from any thread."""
        with self.session.lock:
            already_stopped = self.session.state is WatcherState.STOPPED
            self.session.state = WatcherState.STOPPED
            self.session.cancelled.set()
            self._disarm_debounce()

        if not already_stopped:
            logger.info("Stopping watch of %s", self.session.source_path)

    # ------------------------------------------------------------------
    # Events and debounce
    # ------------------------------------------------------------------

    def on_change(self, event: ChangeEvent) -> bool:
        """
        Handle one change. Returns True if it was accepted and (re)armed the debounce.
        """
        if self.session.is_ignored(event.path):
            logger.debug("Ignoring change: %s", event.path)
            return False

        with self.session.lock:
            if self.session.state is WatcherState.STOPPED:
                return False

            self.session.pending_change = True
            self._arm_debounce()
            if self.session.state is WatcherState.IDLE:
                self.session.state = WatcherState.PENDING_DEBOUNCE

        logger.info("Change detected: %s (%s)", event.path, event.kind.value)
        return True

    def _arm_debounce(self) -> None:
        # session.lock must be held
        self._disarm_debounce()

        generation = self._timer_generation
        self.session.debounce_deadline = self._clock() + self.wait_after_changes

        timer = self._timer_factory(self.wait_after_changes, self._on_debounce_fired, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _disarm_debounce(self) -> None:
        # session.lock must be held
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.session.debounce_deadline = None
        # Invalidates a timer that already fired and is waiting for the lock
        self._timer_generation += 1

    def _on_debounce_fired(self, generation: int) -> bool:
        """Debounce timer callback. Returns True if a backup was requested."""
        with self.session.lock:
            if generation != self._timer_generation or self.session.cancelled.is_set():
                return False

            self._timer = None
            self.session.debounce_deadline = None
            if self.session.state is WatcherState.PENDING_DEBOUNCE:
                self.session.state = WatcherState.IDLE

            last = self.session.last_trigger_time
            if last is not None and self._clock() - last < self.min_backup_interval:
                logger.debug(
                    "Backup of %s throttled (last one %.1fs ago)",
                    self.session.source_path, self._clock() - last
                )
                return False

            try:
                self._requests.put_nowait(_TRIGGER_REQUEST)
            except queue.Full:
                # A request is already queued, it covers this one
                pass
            return True

    # ------------------------------------------------------------------
    # Trigger worker
    # ------------------------------------------------------------------

    def _trigger_loop(self) -> None:
        cancelled = self.session.cancelled
        while not cancelled.is_set():
            try:
                self._requests.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue

            # A request queued while the previous backup was running
            delay = self._throttle_delay()
            if delay > 0 and cancelled.wait(delay):
                break

            self._perform_backup()

    def _throttle_delay(self) -> float:
        with self.session.lock:
            last = self.session.last_trigger_time
        if last is None:
            return 0.0
        return max(0.0, self.min_backup_interval - (self._clock() - last))

    def _perform_backup(self) -> Optional[bool]:
        """
        Run one backup attempt.

        Returns:
            True on success, False on failure, None if skipped (stopped or nothing pending)
        """
        with self.session.lock:
            if self.session.cancelled.is_set():
                return None
            if not self.session.pending_change and self.session.last_trigger_time is not None:
                logger.debug("No pending changes for %s, skipping backup", self.session.source_path)
                return None

            started = self._clock()
            # Changes arriving while the backup runs set this again
            self.session.pending_change = False
            self.session.state = WatcherState.EXECUTING

        logger.info("Starting backup of %s", self.session.source_path)
        try:
            self.trigger(self.session)
            succeeded = True
        except Exception as e:
            logger.error("Backup of %s failed: %s", self.session.source_path, e)
            succeeded = False

        with self.session.lock:
            if succeeded:
                self.session.last_trigger_time = started
            else:
                self.session.pending_change = True

            if self.session.state is WatcherState.EXECUTING:
                self.session.state = (
                    WatcherState.PENDING_DEBOUNCE if self._timer is not None else WatcherState.IDLE
                )

        if succeeded:
            logger.info("Backup of %s completed", self.session.source_path)
        return succeeded
