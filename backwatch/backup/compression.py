"""
Archive handling for compressed backups.

A finished backup directory can be packed into a single archive:
- tar.gz: Gzip compressed tar (default)
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- zip: Standard zip compression
- none: No compression (tar only)
"""

import os
import tarfile
import zipfile
from pathlib import Path


class CompressionError(Exception):
    """Raised when archive creation or extraction fails."""
    pass


# format -> (extension, tarfile write mode or None for zip)
ARCHIVE_FORMATS = {
    'tar.gz': ('tar.gz', 'w:gz'),
    'tar.bz2': ('tar.bz2', 'w:bz2'),
    'tar.xz': ('tar.xz', 'w:xz'),
    'zip': ('zip', None),
    'none': ('tar', 'w'),
}


def create_archive(source_dir: str, output_path: str, compression_format: str = 'tar.gz') -> str:
    """
    Pack a backup directory into an archive.

    The archive holds a single top-level directory named after source_dir.

    Args:
        source_dir: Directory to archive
        output_path: Path where archive should be created (without extension)
        compression_format: Format to use ('tar.gz', 'tar.bz2', 'tar.xz', 'zip', 'none')

    Returns:
        Full path to the created archive file

    Raises:
        CompressionError: If archive creation fails
        ValueError: If compression_format is invalid
    """
    if compression_format not in ARCHIVE_FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(ARCHIVE_FORMATS.keys())}"
        )

    source = Path(source_dir)
    if not source.is_dir():
        raise CompressionError(f"Directory does not exist: {source_dir}")

    extension, mode = ARCHIVE_FORMATS[compression_format]
    archive_path = f"{output_path}.{extension}"

    try:
        if mode is None:
            _create_zip(source, archive_path)
        else:
            with tarfile.open(archive_path, mode) as tar:
                tar.add(source, arcname=source.name, recursive=True)
        return archive_path
    except Exception as e:
        # Clean up partial archive on failure
        if os.path.exists(archive_path):
            try:
                os.remove(archive_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}") from e


def _create_zip(source: Path, archive_path: str):
    with zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED) as zipf:
        for item in source.rglob('*'):
            if item.is_file():
                zipf.write(item, item.relative_to(source.parent))


def extract_archive(archive_path: str, dest_dir: str) -> str:
    """
    Extract an archive created by create_archive.

    Args:
        archive_path: Archive file
        dest_dir: Directory to extract into (created if missing)

    Returns:
        Path of the extracted top-level directory

    Raises:
        CompressionError: If the archive is missing, unreadable or empty
    """
    if not os.path.isfile(archive_path):
        raise CompressionError(f"Archive not found: {archive_path}")

    os.makedirs(dest_dir, exist_ok=True)

    try:
        if archive_path.endswith('.zip'):
            with zipfile.ZipFile(archive_path, 'r') as zipf:
                zipf.extractall(dest_dir)
        else:
            with tarfile.open(archive_path, 'r:*') as tar:
                tar.extractall(dest_dir, filter='data')
    except Exception as e:
        raise CompressionError(f"Failed to extract archive {archive_path}: {e}") from e

    directories = sorted(
        entry.path for entry in os.scandir(dest_dir) if entry.is_dir()
    )
    if not directories:
        raise CompressionError(f"Archive contains no directory: {archive_path}")

    return directories[0]


def get_path_size(path: str) -> int:
    """
    Get the size in bytes of a file or of every file under a directory.

    Raises:
        CompressionError: If the path doesn't exist or cannot be accessed
    """
    try:
        if os.path.isfile(path):
            return os.path.getsize(path)

        if not os.path.isdir(path):
            raise FileNotFoundError(path)

        total = 0
        for root, _dirs, files in os.walk(path):
            for name in files:
                file_path = os.path.join(root, name)
                if not os.path.islink(file_path):
                    total += os.path.getsize(file_path)
        return total

    except FileNotFoundError:
        raise CompressionError(f"Path not found: {path}")
    except OSError as e:
        raise CompressionError(f"Failed to get size of {path}: {e}") from e
