"""
Repository registry - discovers git repositories under a root directory.

The slug -> handle index is an immutable snapshot. Loading builds a new
index off to the side and swaps it in with a single assignment, so readers
never see a half-built map and never need to lock.
"""

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from dulwich.errors import NotGitRepository
from dulwich.repo import Repo as DulwichRepo

from gitsmithy.services.errors import (
    InvalidRepositoryNameError,
    RegistryError,
    RepositoryExistsError,
    RepositoryNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RepositoryHandle:
    """An opened repository and the slug it is published under."""
    slug: str
    path: Path
    repo: DulwichRepo


class RepositoryRegistry:
    """Holds the current slug -> RepositoryHandle index."""

    def __init__(self, root: Path | None = None):
        self.root = root
        self._index: Mapping[str, RepositoryHandle] = MappingProxyType({})
        self._write_lock = threading.Lock()

    def snapshot(self) -> Mapping[str, RepositoryHandle]:
        """Return the current index. The mapping is read-only."""
        return self._index

    def load(self, root: Path | None = None) -> Mapping[str, RepositoryHandle]:
        """
        Scan the immediate subdirectories of root and rebuild the index.

        Entries that do not open as git repositories are skipped. Only a
        root that cannot be listed is an error.
        """
        if root is None:
            root = self.root
        if root is None:
            raise RegistryError("No repositories root configured")
        root = Path(root)
        try:
            with os.scandir(root) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise RegistryError(f"Cannot list repositories root {root}: {e}") from e

        index = {}
        for entry in entries:
            if not entry.is_dir():
                continue
            repo_path = root / entry.name
            try:
                repo = DulwichRepo(str(repo_path))
            except (NotGitRepository, OSError) as e:
                logger.debug(f"Skipping {repo_path}: {e}")
                continue
            index[entry.name] = RepositoryHandle(slug=entry.name, path=repo_path, repo=repo)

        with self._write_lock:
            self.root = root
            self._index = MappingProxyType(index)
        logger.info(f"Loaded {len(index)} repositories from {root}")
        return self._index

    def reload(self) -> Mapping[str, RepositoryHandle]:
        """Rescan the root the registry was last loaded from."""
        return self.load(self.root)

    def lookup(self, slug: str) -> RepositoryHandle | None:
        return self._index.get(slug)

    def get(self, slug: str) -> RepositoryHandle:
        """Like lookup() but raises RepositoryNotFoundError on a miss."""
        handle = self._index.get(slug)
        if handle is None:
            raise RepositoryNotFoundError(slug)
        return handle

    def list(self) -> list[RepositoryHandle]:
        """All handles, sorted by slug."""
        index = self._index
        return [index[slug] for slug in sorted(index)]

    def add(self, handle: RepositoryHandle) -> None:
        """Insert a single handle without rescanning the root."""
        with self._write_lock:
            index = dict(self._index)
            index[handle.slug] = handle
            self._index = MappingProxyType(index)

    def create(self, slug: str) -> RepositoryHandle:
        """Initialize a new bare repository under the root and register it."""
        validate_slug(slug)
        if self.root is None:
            raise RegistryError("Registry has no root to create repositories in")

        repo_path = self.root / slug
        try:
            # dulwich init_bare needs the directory to exist first
            repo_path.mkdir(parents=True)
        except FileExistsError:
            raise RepositoryExistsError(slug) from None

        try:
            repo = DulwichRepo.init_bare(str(repo_path))
        except Exception:
            shutil.rmtree(repo_path, ignore_errors=True)
            raise
        handle = RepositoryHandle(slug=slug, path=repo_path, repo=repo)
        self.add(handle)
        logger.info(f"Created bare repository {slug} at {repo_path}")
        return handle


def validate_slug(slug: str) -> None:
    """Slugs are single, non-hidden path segments."""
    if not slug or slug in (".", "..") or slug.startswith("."):
        raise InvalidRepositoryNameError(f"Invalid repository name: {slug!r}")
    if "/" in slug or "\\" in slug or "\x00" in slug:
        raise InvalidRepositoryNameError(f"Invalid repository name: {slug!r}")


registry = RepositoryRegistry()
