"""
Input validation for backup configs.
"""

import os
import re

NAME_MAX_LENGTH = 100

_NAME_PATTERN = re.compile(r'^[a-zA-Z0-9_-]+$')

# Characters a shell would interpret; never allowed in exclude patterns
_PATTERN_FORBIDDEN = set(';|&`$()<>')


def validate_name(name) -> str:
    """
    Validate a backup name.

    Returns:
        An error message, or an empty string if the name is valid
    """
    if not name or not isinstance(name, str):
        return 'Backup name is required'
    if len(name) > NAME_MAX_LENGTH:
        return f'Backup name must be at most {NAME_MAX_LENGTH} characters'
    if not _NAME_PATTERN.match(name):
        return 'Backup name may only contain letters, digits, underscores and hyphens'
    return ''


def validate_source_path(path, must_exist: bool = True) -> str:
    """
    Validate a directory to back up.

    Args:
        path: Directory path
        must_exist: Also require the directory to exist

    Returns:
        An error message, or an empty string if the path is valid
    """
    if not path or not isinstance(path, str):
        return 'Source path is required'
    if '..' in path.replace('\\', '/').split('/'):
        return 'Source path must not contain ".." segments'
    if must_exist and not os.path.isdir(os.path.expanduser(path)):
        return f'Source directory does not exist: {path}'
    return ''


def validate_exclude_patterns(patterns) -> str:
    """
    Validate a list of exclude glob patterns.

    Returns:
        An error message, or an empty string if every pattern is valid
    """
    if patterns is None:
        return ''
    if not isinstance(patterns, list):
        return 'Exclude patterns must be a list'

    for pattern in patterns:
        if not isinstance(pattern, str) or not pattern.strip():
            return 'Exclude patterns must be non-empty strings'
        bad = sorted(_PATTERN_FORBIDDEN.intersection(pattern))
        if bad:
            return f'Exclude pattern {pattern!r} contains forbidden characters: {"".join(bad)}'
    return ''
