"""
Safe path resolution for project-relative paths.

Every user supplied path is resolved against ``root/project`` and checked with
a containment predicate on canonicalized absolute paths. The resolvers return
``None`` for rejected input instead of raising.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ('.md', '.markdown')

PathLike = Union[str, Path]


def is_markdown(name: str) -> bool:
    return name.endswith(MARKDOWN_EXTENSIONS)


def canonical(path: PathLike) -> str:
    """Absolute path with symlinks, ``.`` and ``..`` resolved."""
    return os.path.realpath(os.path.abspath(path))


def is_within(path: str, boundary: str) -> bool:
    """True when ``path`` is ``boundary`` or one of its descendants.

    Both arguments must already be canonical.
    """
    if path == boundary:
        return True
    prefix = boundary if boundary.endswith(os.sep) else boundary + os.sep
    return path.startswith(prefix)


def _is_plain_segment(name: str) -> bool:
    if not name or name in ('.', '..'):
        return False
    if '\x00' in name or '/' in name or '\\' in name:
        return False
    return True


def _project_dir(root: PathLike, project: str) -> Optional[str]:
    """Canonical project directory, or None if it is not a child of root."""
    if not _is_plain_segment(project):
        return None
    root_dir = canonical(root)
    project_dir = canonical(os.path.join(root_dir, project))
    if project_dir == root_dir or not is_within(project_dir, root_dir):
        return None
    return project_dir


def _resolve_inside(project_dir: str, rel_path: str) -> Optional[str]:
    if '\x00' in rel_path:
        return None
    # Absolute inputs (including Windows drive paths) never stay inside
    if os.path.isabs(rel_path) or rel_path.startswith(('/', '\\')):
        return None
    resolved = canonical(os.path.join(project_dir, rel_path))
    if not is_within(resolved, project_dir):
        return None
    return resolved


def resolve_read_path(root: PathLike, project: str, rel_path: str) -> Optional[Path]:
    """Resolve a markdown document path for render and raw reads."""
    project_dir = _project_dir(root, project)
    if project_dir is None:
        logger.warning(f"Rejected project name: {project!r}")
        return None
    resolved = _resolve_inside(project_dir, rel_path)
    if resolved is None:
        logger.warning(f"Attempted path traversal: {project}/{rel_path}")
        return None
    if not is_markdown(resolved):
        return None
    return Path(resolved)


def resolve_asset_path(root: PathLike, project: str, rel_path: str) -> Optional[Path]:
    """Resolve any file inside a project (images and other assets)."""
    project_dir = _project_dir(root, project)
    if project_dir is None:
        logger.warning(f"Rejected project name: {project!r}")
        return None
    resolved = _resolve_inside(project_dir, rel_path)
    if resolved is None:
        logger.warning(f"Attempted path traversal: {project}/{rel_path}")
        return None
    return Path(resolved)


def resolve_upload_dir(root: PathLike, project: str, folder_path: str) -> Optional[Path]:
    """Resolve the target directory of an upload.

    An empty ``folder_path`` means the project directory itself.
    """
    project_dir = _project_dir(root, project)
    if project_dir is None:
        logger.warning(f"Rejected upload project: {project!r}")
        return None
    if not folder_path:
        return Path(project_dir)
    resolved = _resolve_inside(project_dir, folder_path)
    if resolved is None:
        logger.warning(f"Attempted upload traversal: {project}/{folder_path}")
        return None
    return Path(resolved)


def relative_posix(path: PathLike, start: PathLike) -> str:
    """``path`` relative to ``start`` with forward slashes on every OS."""
    return Path(os.path.relpath(path, start)).as_posix()
