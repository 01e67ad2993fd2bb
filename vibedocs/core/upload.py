"""
Writing uploaded files without ever overwriting existing entries.

Name collisions are resolved by probing ``stem-1.ext`` up to ``stem-100.ext``.
Files are created exclusively and writes into one directory are serialized
with a lock keyed by its resolved path.
"""

import logging
import os
import threading
import weakref
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ConflictExhausted, StorageError, ValidationError
from .paths import canonical, relative_posix

logger = logging.getLogger(__name__)

MAX_CONFLICT_SUFFIX = 100


class InvalidName(ValidationError):
    pass


class TooManyConflicts(ConflictExhausted):
    pass


@dataclass(frozen=True)
class UploadResult:
    original_name: str
    saved_name: str
    relative_path: str

    def to_dict(self) -> Dict[str, str]:
        return {
            'originalName': self.original_name,
            'savedName': self.saved_name,
            'relativePath': self.relative_path,
        }


class DirectoryLocks:
    """One lock per resolved target directory, kept only while someone holds it."""

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._guard = threading.Lock()

    def get(self, directory: str) -> threading.Lock:
        key = canonical(directory)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


_DEFAULT_LOCKS = DirectoryLocks()


def sanitize_name(original_name: str) -> str:
    """Strip any directory components, POSIX or Windows style."""
    name = (original_name or '').replace('\\', '/').rsplit('/', 1)[-1]
    if name in ('', '.', '..') or '\x00' in name:
        raise InvalidName(f'Invalid filename: "{original_name}"')
    return name


def split_name(name: str) -> Tuple[str, str]:
    """``('report', '.md')`` for ``report.md``; dotfiles have no extension."""
    stem, ext = os.path.splitext(name)
    return stem, ext


def candidate_names(name: str):
    yield name
    stem, ext = split_name(name)
    for i in range(1, MAX_CONFLICT_SUFFIX + 1):
        yield f'{stem}-{i}{ext}'


def _create_exclusive(path: str, data: bytes) -> bool:
    """Write ``data`` to a new file; False if the name is already taken."""
    try:
        with open(path, 'xb') as f:
            f.write(data)
    except FileExistsError:
        return False
    return True


def write_uploaded_file(target_dir: str, original_name: str, data: bytes,
                        project_dir: Optional[str] = None,
                        locks: DirectoryLocks = _DEFAULT_LOCKS) -> UploadResult:
    safe_name = sanitize_name(original_name)
    base = project_dir or target_dir

    with locks.get(target_dir):
        for candidate in candidate_names(safe_name):
            full_path = os.path.join(target_dir, candidate)
            if os.path.lexists(full_path):
                continue
            try:
                created = _create_exclusive(full_path, data)
            except OSError as e:
                logger.error(f"Failed to write upload {candidate}: {e}")
                raise StorageError(f'Failed to write "{safe_name}"') from e
            if not created:
                # Appeared between the existence check and the create
                continue
            if candidate != safe_name:
                logger.info(f"Upload {safe_name} saved as {candidate} to avoid a conflict")
            return UploadResult(
                original_name=safe_name,
                saved_name=candidate,
                relative_path=relative_posix(full_path, base),
            )

    raise TooManyConflicts(f'Too many naming conflicts for "{safe_name}"')


def write_uploaded_files(target_dir: str, files: Iterable[Tuple[str, bytes]],
                         project_dir: Optional[str] = None,
                         locks: DirectoryLocks = _DEFAULT_LOCKS) -> List[UploadResult]:
    """Write a batch in submission order."""
    return [
        write_uploaded_file(target_dir, name, data, project_dir=project_dir, locks=locks)
        for name, data in files
    ]
