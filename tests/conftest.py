"""
Shared pytest fixtures for backwatch tests.

This module provides fixtures for:
- Flask app and test client
- Database setup with in-memory SQLite
- Backup config and backup record fixtures
- A controllable timer and clock for watcher tests
- Temporary file fixtures
"""

import os
import json
import shutil
import tempfile

import pytest

from backwatch import create_app, db as _db
from backwatch.models import BackupConfig, BackupRecord


@pytest.fixture(scope='function')
def app():
    """
    Create Flask app with test configuration.

    Uses in-memory SQLite database for fast, isolated tests.
    """
    temp_dir = tempfile.mkdtemp()

    app = create_app('testing')

    # Per-test filesystem layout
    app.config.update({
        'BACKUP_DESTINATION': os.path.join(temp_dir, 'backups'),
        'TEMP_DIR': os.path.join(temp_dir, 'temp'),
    })
    os.makedirs(app.config['BACKUP_DESTINATION'], exist_ok=True)
    os.makedirs(app.config['TEMP_DIR'], exist_ok=True)

    yield app

    app.extensions['backwatch_watches'].stop_all()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture(scope='function')
def db(app):
    """
    Create database with all tables.

    Each test gets a fresh database.
    """
    with app.app_context():
        _db.create_all()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Flask test client for making HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """Flask CLI test runner."""
    return app.test_cli_runner()


@pytest.fixture
def source_dir(tmp_path):
    """
    Create a directory to back up.

    Creates:
    - notes.txt
    - docs/report.md
    - .git/index (hidden, never triggers backups)
    """
    source = tmp_path / 'source'
    source.mkdir()
    (source / 'notes.txt').write_text('Some notes')

    docs = source / 'docs'
    docs.mkdir()
    (docs / 'report.md').write_text('# Report')

    git = source / '.git'
    git.mkdir()
    (git / 'index').write_bytes(b'index')

    return source


@pytest.fixture(scope='function')
def backup_config(db, source_dir):
    """
    Create a backup config for the source_dir fixture.
    """
    config = BackupConfig(
        name='docs',
        source_path=str(source_dir),
        compression=False,
        incremental=True,
        exclude_dirs=json.dumps(['node_modules']),
        exclude_files=json.dumps(['*.tmp']),
        interval_minutes=0,
        enabled=True
    )
    db.session.add(config)
    db.session.commit()
    return config


@pytest.fixture
def make_record(db, tmp_path):
    """
    Factory creating BackupRecord rows, each with a backup directory on disk.

    Usage: make_record('docs', datetime(2024, 1, 1, 12, 0))
    """
    counter = {'n': 0}

    def _make(name, created_at, compression=False):
        counter['n'] += 1
        record_id = f"{name}_{created_at:%Y%m%d_%H%M%S}_{counter['n']:06x}"

        backup_path = tmp_path / 'backups' / record_id
        if compression:
            backup_path = backup_path.with_name(record_id + '.tar.gz')
            backup_path.parent.mkdir(parents=True, exist_ok=True)
            backup_path.write_bytes(b'archive')
        else:
            backup_path.mkdir(parents=True)
            (backup_path / 'file.txt').write_text(record_id)

        record = BackupRecord(
            id=record_id,
            name=name,
            source_path='/data/' + name,
            backup_path=str(backup_path),
            created_at=created_at,
            size_bytes=1024,
            compression=compression
        )
        db.session.add(record)
        db.session.commit()
        return record

    return _make


class FakeTimer:
    """threading.Timer stand-in fired explicitly by the test."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        return self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Timer factory remembering every timer it created."""

    def __init__(self):
        self.created = []

    def __call__(self, interval, function, args=None, kwargs=None):
        timer = FakeTimer(interval, function, args, kwargs)
        self.created.append(timer)
        return timer

    @property
    def last(self):
        return self.created[-1]

    @property
    def live(self):
        return [t for t in self.created if t.started and not t.cancelled]


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_timers():
    return FakeTimers()


@pytest.fixture
def fake_clock():
    return FakeClock()

