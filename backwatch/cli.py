"""
Flask CLI commands.

    flask --app run watch NAME [--duration SECONDS]
    flask --app run backup NAME
    flask --app run cleanup NAME
"""

import threading

import click
from flask import current_app
from flask.cli import with_appcontext

from backwatch.models import BackupConfig
from backwatch.backup.executor import BackupError, execute_backup_by_name
from backwatch.backup.retention import RetentionManager, load_retention_policy
from backwatch.watch.notifier import NotifierUnavailable
from backwatch.watch.supervisor import WatchSupervisor, build_watcher, install_signal_handlers
from backwatch.watch.watcher import WatchError


def _get_config(name: str) -> BackupConfig:
    config = BackupConfig.query.filter_by(name=name).first()
    if config is None:
        raise click.ClickException(f"Backup config not found: {name}")
    return config


@click.command('watch')
@with_appcontext
@click.argument('name')
@click.option('--duration', type=float, default=None,
              help='Stop after this many seconds (default: until SIGINT/SIGTERM).')
def watch_command(name, duration):
    """Watch a backup config's directory and back it up after changes."""
    config = _get_config(name)
    app = current_app._get_current_object()

    try:
        supervisor = WatchSupervisor(build_watcher(app, config))
    except NotifierUnavailable as e:
        raise click.ClickException(str(e))

    click.echo(f"Watching {config.source_path} for backup '{config.name}' (Ctrl+C to stop)")

    try:
        if duration is not None:
            supervisor.run_for(duration)
        else:
            shutdown = threading.Event()
            install_signal_handlers(shutdown)
            supervisor.run_until_signaled(shutdown)
    except (WatchError, NotifierUnavailable) as e:
        raise click.ClickException(str(e))

    click.echo("Watch stopped")


@click.command('backup')
@with_appcontext
@click.argument('name')
def backup_command(name):
    """Run one backup of a backup config now."""
    _get_config(name)

    try:
        record = execute_backup_by_name(name)
    except BackupError as e:
        raise click.ClickException(str(e))

    click.echo(f"Backup {record.id} created at {record.backup_path}")


@click.command('cleanup')
@with_appcontext
@click.argument('name')
def cleanup_command(name):
    """Apply the retention policy to a backup name."""
    summary = RetentionManager().cleanup_for_name(name, load_retention_policy())

    click.echo(f"Kept {summary['kept']}, deleted {summary['deleted']} backups of '{name}'")
    for error in summary['errors']:
        click.echo(f"Error: {error}", err=True)


def register_commands(app):
    app.cli.add_command(watch_command)
    app.cli.add_command(backup_command)
    app.cli.add_command(cleanup_command)
