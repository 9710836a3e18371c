"""
Lifetime management for watchers.

WatchSupervisor runs one Watcher on a background thread and stops it after a
duration or when a stop signal is set. WatchRegistry keeps the supervisors
started through the HTTP API, one per backup name.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Dict, List, Optional

from .notifier import create_notifier
from .watcher import Watcher, WatchError, WatchSession

logger = logging.getLogger(__name__)

# How often the stop waiter re-checks the watcher thread (seconds)
_WAIT_INTERVAL = 0.1


class WatchSupervisor:
    """
    Runs a Watcher until a deadline or a stop signal.

    Exactly one stop() reaches the watcher, however the run ends. An error
    raised by Watcher.start() is re-raised by the run method.
    """

    def __init__(self, watcher: Watcher) -> None:
        self.watcher = watcher
        self.error: Optional[BaseException] = None
        self._finished = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

    def _run_watcher(self) -> None:
        try:
            self.watcher.start()
        except Exception as e:
            logger.error("Watcher for '%s' failed: %s", self.watcher.session.name, e)
            self.error = e
        finally:
            self._finished.set()

    def _start_thread(self) -> threading.Thread:
        thread = threading.Thread(
            target=self._run_watcher,
            name=f"backwatch-watch-{self.watcher.session.name}",
            daemon=True,
        )
        thread.start()
        return thread

    def stop(self) -> None:
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True
        self.watcher.stop()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def run_for(self, duration: float) -> None:
        """
        Watch for ``duration`` seconds, or less if the watcher ends on its own.

        Raises:
            The error Watcher.start() failed with, if any
        """
        thread = self._start_thread()
        thread.join(timeout=duration)
        self.stop()
        thread.join()
        self._raise_error()

    def run_until_signaled(self, stop_signal: threading.Event) -> None:
        """
        Watch until ``stop_signal`` is set or the watcher ends on its own.

        Both the watcher thread and the stop waiter are joined before returning.

        Raises:
            The error Watcher.start() failed with, if any
        """
        watcher_thread = self._start_thread()

        def _wait_for_stop():
            while not stop_signal.wait(_WAIT_INTERVAL):
                if self._finished.is_set():
                    break
            self.stop()

        waiter = threading.Thread(
            target=_wait_for_stop,
            name=f"backwatch-stop-{self.watcher.session.name}",
            daemon=True,
        )
        waiter.start()

        watcher_thread.join()
        waiter.join()
        self._raise_error()

    def _raise_error(self) -> None:
        if self.error is not None:
            raise self.error


def install_signal_handlers(shutdown_event: threading.Event) -> dict:
    """
    Set ``shutdown_event`` on SIGINT and SIGTERM.

    Must be called from the main thread.

    Returns:
        The previous handlers, keyed by signal number
    """
    def _handle(signum, frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        shutdown_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def build_watcher(app, config, trigger=None) -> Watcher:
    """
    Create a Watcher for a BackupConfig using the app's watch settings.

    Args:
        app: Flask app
        config: BackupConfig to watch
        trigger: Backup callable (default: run_backup with the config's options)

    Raises:
        NotifierUnavailable: If the configured notifier cannot run
    """
    from backwatch.backup.executor import BackupOptions, make_backup_trigger

    notifier = create_notifier(app.config['NOTIFIER_BACKEND'])
    if trigger is None:
        trigger = make_backup_trigger(app, BackupOptions.from_config(config))

    return Watcher(
        WatchSession.from_config(config),
        trigger,
        notifier=notifier,
        wait_after_changes=app.config['WATCH_WAIT_AFTER_CHANGES'],
        min_backup_interval=app.config['WATCH_MIN_BACKUP_INTERVAL'],
    )


class _RegisteredWatch:
    def __init__(self, supervisor: WatchSupervisor, stop_signal: threading.Event, thread: threading.Thread):
        self.supervisor = supervisor
        self.stop_signal = stop_signal
        self.thread = thread


class WatchRegistry:
    """Background watches of one app, keyed by backup name."""

    extension_name = 'backwatch_watches'

    def __init__(self, app=None) -> None:
        self.app = None
        self._watches: Dict[str, _RegisteredWatch] = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self.app = app
        app.extensions[self.extension_name] = self

    def start(self, config, trigger=None) -> WatchSupervisor:
        """
        Start watching a BackupConfig in the background.

        Raises:
            WatchError: If the config is already being watched or its directory is missing
            NotifierUnavailable: If no change notifier can run
        """
        with self._lock:
            self._forget_finished()
            if config.name in self._watches:
                raise WatchError(f"Backup '{config.name}' is already being watched")

            watcher = build_watcher(self.app, config, trigger)
            if not os.path.isdir(watcher.session.source_path):
                raise WatchError(f"Directory to watch does not exist: {config.source_path}")

            supervisor = WatchSupervisor(watcher)
            stop_signal = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(supervisor, stop_signal),
                name=f"backwatch-supervisor-{config.name}",
                daemon=True,
            )
            self._watches[config.name] = _RegisteredWatch(supervisor, stop_signal, thread)
            thread.start()

        logger.info("Started background watch for '%s'", config.name)
        return supervisor

    @staticmethod
    def _run(supervisor: WatchSupervisor, stop_signal: threading.Event) -> None:
        try:
            supervisor.run_until_signaled(stop_signal)
        except Exception as e:
            # Kept on supervisor.error and reported when the entry is dropped
            logger.debug("Supervisor for %s ended with %r", supervisor.watcher.session.name, e)

    def stop(self, name: str, timeout: Optional[float] = None) -> bool:
        """
        Stop a watch and wait for it to finish. Returns False if it was not running.
        """
        with self._lock:
            entry = self._watches.pop(name, None)

        if entry is None:
            return False

        entry.stop_signal.set()
        entry.thread.join(timeout)
        logger.info("Stopped background watch for '%s'", name)
        return True

    def stop_all(self) -> None:
        with self._lock:
            names = list(self._watches)
        for name in names:
            self.stop(name)

    def active(self) -> List[dict]:
        with self._lock:
            self._forget_finished()
            entries = list(self._watches.values())
        return [entry.supervisor.watcher.session.snapshot() for entry in entries]

    def is_watching(self, name: str) -> bool:
        with self._lock:
            self._forget_finished()
            return name in self._watches

    def _forget_finished(self) -> None:
        # self._lock must be held
        for name in [n for n, entry in self._watches.items() if not entry.thread.is_alive()]:
            entry = self._watches.pop(name)
            if entry.supervisor.error is not None:
                logger.warning("Watch for '%s' ended: %s", name, entry.supervisor.error)


def get_watch_registry(app) -> WatchRegistry:
    return app.extensions[WatchRegistry.extension_name]
