"""
Project file tree discovery.

A best-effort recursive walk: every entry produces a ``WalkOutcome`` that is
either a node or a skip reason. Skips are logged at DEBUG level and dropped
when the level is aggregated, so one unreadable entry never blanks out a tree.
"""

import logging
import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .paths import is_markdown, relative_posix

logger = logging.getLogger(__name__)

# Directories that are never documentation
EXCLUDED_DIRS: FrozenSet[str] = frozenset({
    'node_modules', '.git', '.next', 'dist', 'build', 'out',
    'coverage', 'tmp', 'temp', '_archived', 'vibedocs',
    '.project-template', 'test-projects',
})


class NodeKind(Enum):
    FILE = 'file'
    FOLDER = 'folder'


@dataclass(frozen=True)
class FileNode:
    name: str
    path: str
    kind: NodeKind
    children: Tuple['FileNode', ...] = ()
    is_asset: bool = False

    @property
    def is_folder(self) -> bool:
        return self.kind is NodeKind.FOLDER

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'name': self.name,
            'path': self.path,
            'type': self.kind.value,
        }
        if self.is_folder:
            data['children'] = [child.to_dict() for child in self.children]
        else:
            data['isAsset'] = self.is_asset
        return data


class SkipReason(Enum):
    HIDDEN = 'hidden'
    EXCLUDED = 'excluded'
    STAT_FAILED = 'stat-failed'
    SPECIAL = 'special'
    EMPTY_FILE = 'empty-file'
    EMPTY_FOLDER = 'empty-folder'


@dataclass(frozen=True)
class WalkOutcome:
    entry: str
    node: Optional[FileNode] = None
    skipped: Optional[SkipReason] = None
    detail: str = field(default='', compare=False)

    @property
    def kept(self) -> bool:
        return self.node is not None


def list_entries(directory: str) -> Optional[List[str]]:
    """Directory entry names in code point order, or None if unreadable."""
    try:
        names = os.listdir(directory)
    except OSError as e:
        logger.debug(f"Unreadable directory {directory}: {e}")
        return None
    return sorted(names)


def is_excluded_name(name: str, excluded_dirs: Iterable[str] = EXCLUDED_DIRS) -> bool:
    return name.startswith('.') or name in excluded_dirs


def walk_entry(directory: str, name: str, project_root: str,
               excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS,
               _ancestors: FrozenSet[Tuple[int, int]] = frozenset()) -> WalkOutcome:
    """Classify a single directory entry, recursing into folders."""
    if name.startswith('.'):
        return WalkOutcome(name, skipped=SkipReason.HIDDEN)

    full_path = os.path.join(directory, name)
    try:
        st = os.stat(full_path)
    except OSError as e:
        return WalkOutcome(name, skipped=SkipReason.STAT_FAILED, detail=str(e))

    rel_path = relative_posix(full_path, project_root)

    if stat.S_ISDIR(st.st_mode):
        if name in excluded_dirs:
            return WalkOutcome(name, skipped=SkipReason.EXCLUDED)
        children = build_tree(full_path, project_root, excluded_dirs, _ancestors)
        if not children:
            return WalkOutcome(name, skipped=SkipReason.EMPTY_FOLDER)
        node = FileNode(name=name, path=rel_path, kind=NodeKind.FOLDER, children=children)
        return WalkOutcome(name, node=node)

    if not stat.S_ISREG(st.st_mode):
        return WalkOutcome(name, skipped=SkipReason.SPECIAL)
    if st.st_size == 0:
        return WalkOutcome(name, skipped=SkipReason.EMPTY_FILE)

    node = FileNode(name=name, path=rel_path, kind=NodeKind.FILE, is_asset=not is_markdown(name))
    return WalkOutcome(name, node=node)


def build_tree(directory: str, project_root: str,
               excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS,
               _ancestors: FrozenSet[Tuple[int, int]] = frozenset()) -> Tuple[FileNode, ...]:
    """Ordered, immutable snapshot of the qualifying entries under ``directory``.

    ``project_root`` is the boundary node paths are made relative to.
    """
    try:
        st = os.stat(directory)
    except OSError:
        return ()
    # A symlink back to an ancestor would otherwise recurse forever
    identity = (st.st_dev, st.st_ino)
    if identity in _ancestors:
        logger.debug(f"Skipping directory cycle at {directory}")
        return ()
    _ancestors = _ancestors | {identity}

    names = list_entries(directory)
    if names is None:
        return ()

    nodes: List[FileNode] = []
    for name in names:
        outcome = walk_entry(directory, name, project_root, excluded_dirs, _ancestors)
        if outcome.kept:
            nodes.append(outcome.node)
        elif outcome.skipped is SkipReason.STAT_FAILED:
            logger.debug(f"Skipping {os.path.join(directory, name)}: {outcome.detail}")
    return tuple(nodes)


def iter_files(nodes: Iterable[FileNode]):
    """Depth-first iteration over the file nodes of a tree."""
    for node in nodes:
        if node.is_folder:
            yield from iter_files(node.children)
        else:
            yield node
