"""
Tree walking - directory listings and file contents at a commit.

Every call walks down from the commit's root tree; nothing is cached.
File contents are read fully into memory, which suits browsing but not
very large blobs.
"""

import posixpath
import stat
from dataclasses import dataclass
from enum import Enum

from dulwich.errors import NotTreeError
from dulwich.objects import Blob, S_ISGITLINK, SubmoduleEncountered, Tree
from dulwich.repo import Repo as DulwichRepo

from gitsmithy.services.errors import PathNotFoundError
from gitsmithy.services.revisions import get_commit

# Checked in order, first match wins
README_CANDIDATES = (
    "README",
    "README.md",
    "README.markdown",
    "readme",
    "readme.md",
    "readme.markdown",
)

# Bytes inspected when deciding whether a blob is binary
BINARY_SNIFF_SIZE = 8000


class EntryMode(str, Enum):
    FILE = "file"
    EXECUTABLE = "executable"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    SUBMODULE = "submodule"


def classify_mode(mode: int) -> EntryMode:
    if S_ISGITLINK(mode):
        return EntryMode.SUBMODULE
    if stat.S_ISDIR(mode):
        return EntryMode.DIRECTORY
    if stat.S_ISLNK(mode):
        return EntryMode.SYMLINK
    if mode & 0o111:
        return EntryMode.EXECUTABLE
    return EntryMode.FILE


@dataclass(frozen=True)
class TreeEntry:
    name: str
    mode: EntryMode
    id: str
    raw_mode: int

    @property
    def is_dir(self) -> bool:
        return self.mode is EntryMode.DIRECTORY


@dataclass(frozen=True)
class Directory:
    path: str
    parent_path: str
    entries: list[TreeEntry]


@dataclass(frozen=True)
class File:
    path: str
    parent_path: str
    entry: TreeEntry
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def is_binary(self) -> bool:
        return is_binary(self.content)


TreeNode = Directory | File


def is_binary(data: bytes) -> bool:
    """Same heuristic git uses: a NUL byte near the start."""
    return b"\x00" in data[:BINARY_SNIFF_SIZE]


def normalize_path(path: str) -> str:
    return "/".join(part for part in path.split("/") if part)


def parent_of(path: str) -> str:
    """The path with its last segment removed; the root is its own parent."""
    return posixpath.dirname(normalize_path(path))


def _entries(tree: Tree) -> list[TreeEntry]:
    return [
        TreeEntry(
            name=entry.path.decode("utf-8", errors="replace"),
            mode=classify_mode(entry.mode),
            id=entry.sha.decode("ascii"),
            raw_mode=entry.mode,
        )
        for entry in tree.iteritems()
    ]


def _root_tree(repo: DulwichRepo, commit_id: str) -> Tree:
    commit = get_commit(repo, commit_id)
    return repo.object_store[commit.tree]


def list_root(repo: DulwichRepo, commit_id: str) -> list[TreeEntry]:
    """Entries of the commit's root tree in stored order."""
    return _entries(_root_tree(repo, commit_id))


def resolve(repo: DulwichRepo, commit_id: str, path: str) -> TreeNode:
    """
    Resolve path at commit to a Directory or a File.

    An empty path is the root directory. Raises PathNotFoundError if any
    segment is missing or a non-tree is traversed.
    """
    path = normalize_path(path)
    root = _root_tree(repo, commit_id)
    if not path:
        return Directory(path="", parent_path="", entries=_entries(root))

    try:
        mode, sha = root.lookup_path(repo.object_store.__getitem__, path.encode("utf-8"))
    except (KeyError, NotTreeError, SubmoduleEncountered):
        raise PathNotFoundError(path) from None

    if S_ISGITLINK(mode):
        # Submodule commits live in another repository
        raise PathNotFoundError(path)

    obj = repo.object_store[sha]
    if isinstance(obj, Tree):
        return Directory(path=path, parent_path=parent_of(path), entries=_entries(obj))
    if not isinstance(obj, Blob):
        raise PathNotFoundError(path)

    entry = TreeEntry(
        name=posixpath.basename(path),
        mode=classify_mode(mode),
        id=sha.decode("ascii"),
        raw_mode=mode,
    )
    return File(path=path, parent_path=parent_of(path), entry=entry, content=obj.data)


def find_readme(repo: DulwichRepo, commit_id: str) -> File | None:
    """Return the first README candidate at the root that is a file."""
    names = {entry.name: entry for entry in list_root(repo, commit_id)}
    for candidate in README_CANDIDATES:
        entry = names.get(candidate)
        if entry is None or entry.is_dir or entry.mode is EntryMode.SUBMODULE:
            continue
        node = resolve(repo, commit_id, candidate)
        if isinstance(node, File):
            return node
    return None
