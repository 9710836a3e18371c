"""
Watch module for backwatch.

Turns filesystem changes into rate-limited backup runs:
- Change notifiers (inotifywait, fswatch, watchdog)
- The debounce/throttle watcher state machine
- Supervisors bounding a watcher's lifetime
"""

from .notifier import ChangeEvent, ChangeKind, NotifierUnavailable, NotifierError, create_notifier
from .watcher import Watcher, WatchSession, WatcherState, WatchError
from .supervisor import WatchSupervisor, WatchRegistry, install_signal_handlers, get_watch_registry

__all__ = [
    'ChangeEvent',
    'ChangeKind',
    'NotifierUnavailable',
    'NotifierError',
    'create_notifier',
    'Watcher',
    'WatchSession',
    'WatcherState',
    'WatchError',
    'WatchSupervisor',
    'WatchRegistry',
    'install_signal_handlers',
    'get_watch_registry'
]
