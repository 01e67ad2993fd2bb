"""
Full-text search over every markdown document of every project.

The index is an immutable tuple of entries held by ``SearchIndex``. A rebuild
constructs a new tuple and swaps the reference in one assignment, so readers
see either the old or the new index and never a partial one.
"""

import logging
import os
import threading
from dataclasses import asdict, dataclass
from typing import Dict, FrozenSet, List, Tuple

from .catalog import project_directories
from .tree import EXCLUDED_DIRS, build_tree, iter_files

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_MAX_RESULTS = 20
SNIPPET_CONTEXT = 50
ELLIPSIS = '...'


@dataclass(frozen=True)
class IndexEntry:
    project: str
    path: str
    filename: str
    content: str  # lowercased


@dataclass(frozen=True)
class SearchResult:
    project: str
    path: str
    filename: str
    snippet: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def collect_entries(root: str, excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS) -> Tuple[IndexEntry, ...]:
    """Read every non-empty markdown file the catalog would list."""
    entries: List[IndexEntry] = []
    for project, project_dir in project_directories(root, excluded_dirs):
        tree = build_tree(project_dir, project_dir, excluded_dirs)
        for node in iter_files(tree):
            if node.is_asset:
                continue
            file_path = os.path.join(project_dir, *node.path.split('/'))
            try:
                with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                    content = f.read()
            except OSError as e:
                logger.debug(f"Skipping unreadable file {project}/{node.path}: {e}")
                continue
            entries.append(IndexEntry(
                project=project,
                path=node.path,
                filename=node.name,
                content=content.lower(),
            ))
    return tuple(entries)


def make_snippet(content: str, pos: int, length: int) -> str:
    start = max(0, pos - SNIPPET_CONTEXT)
    end = min(len(content), pos + length + SNIPPET_CONTEXT)
    snippet = content[start:end].replace('\r', ' ').replace('\n', ' ').strip()
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(content):
        snippet = snippet + ELLIPSIS
    return snippet


class SearchIndex:
    """Holder for the current index snapshot."""

    def __init__(self, excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS):
        self._entries: Tuple[IndexEntry, ...] = ()
        self._excluded_dirs = excluded_dirs
        # Serializes rebuilds only; searches never take it
        self._rebuild_lock = threading.Lock()

    @property
    def entries(self) -> Tuple[IndexEntry, ...]:
        return self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def rebuild(self, root: str) -> None:
        with self._rebuild_lock:
            entries = collect_entries(root, self._excluded_dirs)
            self._entries = entries
        logger.info(f"Search index: {len(entries)} files indexed")

    def search(self, query: str, max_results: int = DEFAULT_MAX_RESULTS) -> List[SearchResult]:
        if max_results <= 0:
            return []
        q = (query or '').strip().lower()
        if len(q) < MIN_QUERY_LENGTH:
            return []

        results: List[SearchResult] = []
        for entry in self._entries:
            pos = entry.content.find(q)
            if pos == -1:
                continue
            results.append(SearchResult(
                project=entry.project,
                path=entry.path,
                filename=entry.filename,
                snippet=make_snippet(entry.content, pos, len(q)),
            ))
            if len(results) >= max_results:
                break
        return results
