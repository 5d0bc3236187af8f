"""Destination naming for received files. Existing files are never overwritten."""

import re
from pathlib import Path
from typing import Iterator

from common.exceptions import DestinationWriteError
from common.logging_config import get_logger

logger = get_logger(__name__)

FALLBACK_FILE_NAME = "received_file"
MAX_NAME_ATTEMPTS = 10000

_UNSAFE_CHARS = re.compile(r'[<>:"|?*\x00-\x1f]')


def sanitize_file_name(name: str) -> str:
    """
    Reduce a sender-supplied name to a safe base name.

    Directory components are dropped so the file always lands in the
    destination directory.
    """
    base = name.replace('\\', '/').split('/')[-1]
    base = _UNSAFE_CHARS.sub('_', base).strip()
    if base in ('', '.', '..'):
        return FALLBACK_FILE_NAME
    return base


def candidate_names(file_name: str) -> Iterator[str]:
    """
    Yield file_name, then file_name with _1, _2, ... inserted before the extension.

    Example:
        report.pdf, report_1.pdf, report_2.pdf, ...
    """
    path = Path(file_name)
    stem, suffix = path.stem, path.suffix
    yield file_name
    for n in range(1, MAX_NAME_ATTEMPTS):
        yield f"{stem}_{n}{suffix}"


def save_to_destination(directory: Path, file_name: str, data: bytes) -> Path:
    """
    Write data to a new file in directory, choosing a free name.

    Files are created exclusively, so an existing file is never replaced
    even when another writer races for the same name.

    Args:
        directory: Destination directory (created if missing)
        file_name: Preferred file name
        data: File content

    Returns:
        Path of the written file

    Raises:
        DestinationWriteError: If the directory or file cannot be written
    """
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DestinationWriteError(f"Cannot create destination directory {directory}: {e}")

    for name in candidate_names(sanitize_file_name(file_name)):
        target = directory / name
        try:
            with open(target, 'xb') as f:
                f.write(data)
        except FileExistsError:
            continue
        except OSError as e:
            raise DestinationWriteError(f"Cannot write {target}: {e}")
        logger.info(f"Saved {len(data)} bytes to {target}")
        return target

    raise DestinationWriteError(f"No free file name for {file_name} in {directory}")
