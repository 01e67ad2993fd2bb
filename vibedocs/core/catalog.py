"""Project discovery: one ProjectInfo per top-level directory under the root."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Tuple

from .paths import canonical, is_within
from .tree import EXCLUDED_DIRS, FileNode, build_tree, is_excluded_name, list_entries

logger = logging.getLogger(__name__)

DOCS_FOLDER_NAME = 'docs'


@dataclass(frozen=True)
class ProjectInfo:
    name: str
    has_docs_folder: bool
    tree: Tuple[FileNode, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'hasDocsFolder': self.has_docs_folder,
            'tree': [node.to_dict() for node in self.tree],
        }


def project_directories(root: str, excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS):
    """Yield ``(name, path)`` for every candidate project directory, sorted by name."""
    names = list_entries(root)
    if names is None:
        logger.warning(f"Projects root is not readable: {root}")
        return
    real_root = canonical(root)
    for name in names:
        if is_excluded_name(name, excluded_dirs):
            continue
        project_dir = os.path.join(root, name)
        if not os.path.isdir(project_dir):
            continue
        # Must agree with paths._project_dir
        real_dir = canonical(project_dir)
        if real_dir == real_root or not is_within(real_dir, real_root):
            logger.debug(f"Skipping project {name}: links outside the projects root")
            continue
        yield name, project_dir


def discover_projects(root: str, excluded_dirs: FrozenSet[str] = EXCLUDED_DIRS) -> Tuple[ProjectInfo, ...]:
    """Walk the filesystem and return the current project catalog.

    Nothing is cached: each call reflects the filesystem at call time.
    Projects without any qualifying file are left out.
    """
    projects = []
    for name, project_dir in project_directories(root, excluded_dirs):
        tree = build_tree(project_dir, project_dir, excluded_dirs)
        if not tree:
            logger.debug(f"Project {name} has no documents, skipping")
            continue
        has_docs = os.path.isdir(os.path.join(project_dir, DOCS_FOLDER_NAME))
        projects.append(ProjectInfo(name=name, has_docs_folder=has_docs, tree=tree))

    logger.debug(f"Discovered {len(projects)} projects under {root}")
    return tuple(projects)
