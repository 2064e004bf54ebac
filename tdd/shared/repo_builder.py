"""
Build fixture repositories directly from dulwich objects.

Writing objects ourselves keeps tests fast and gives exact control over
timestamps, authors, parents and tree layout.
"""
import shutil
from pathlib import Path

from dulwich.index import commit_tree
from dulwich.objects import Blob, Commit, Tag
from dulwich.repo import Repo

DEFAULT_AUTHOR = "Alice Example <alice@example.com>"
BASE_TIME = 1_700_000_000

FILE_MODE = 0o100644
EXECUTABLE_MODE = 0o100755
SYMLINK_MODE = 0o120000
GITLINK_MODE = 0o160000


def git_available() -> bool:
    """True if a git binary is on PATH."""
    return shutil.which("git") is not None


class RepoBuilder:
    """Creates commits, branches and tags in a fresh bare repository."""

    def __init__(self, path: Path, default_branch: str = "main"):
        path.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.repo = Repo.init_bare(str(path))
        self.repo.refs.set_symbolic_ref(b"HEAD", f"refs/heads/{default_branch}".encode())
        self._states: dict[str, dict[bytes, tuple[bytes, int]]] = {}
        self._clock = BASE_TIME

    def _add_blob(self, data: bytes) -> bytes:
        blob = Blob.from_string(data)
        self.repo.object_store.add_object(blob)
        return blob.id

    def head_of(self, branch: str) -> str | None:
        sha = self.repo.refs.as_dict(b"refs/heads").get(branch.encode())
        return sha.decode("ascii") if sha else None

    def commit(
        self,
        message: str,
        files: dict[str, bytes | tuple[bytes, int]] | None = None,
        delete: tuple[str, ...] = (),
        submodules: dict[str, str] | None = None,
        branch: str = "main",
        parents: list[str] | None = None,
        author: str = DEFAULT_AUTHOR,
        commit_time: int | None = None,
        timezone: int = 0,
    ) -> str:
        """Commit on top of branch (or explicit parents) and advance branch.

        files maps paths to contents, or to (contents, mode). Paths in
        delete are removed. Unmentioned files carry over from the first
        parent.
        """
        if parents is None:
            head = self.head_of(branch)
            parents = [head] if head else []

        state = dict(self._states[parents[0]]) if parents else {}
        for path, content in (files or {}).items():
            data, mode = content if isinstance(content, tuple) else (content, FILE_MODE)
            state[path.encode()] = (self._add_blob(data), mode)
        for path, sha in (submodules or {}).items():
            state[path.encode()] = (sha.encode("ascii"), GITLINK_MODE)
        for path in delete:
            state.pop(path.encode(), None)

        if commit_time is None:
            self._clock += 60
            commit_time = self._clock

        commit = Commit()
        commit.tree = commit_tree(
            self.repo.object_store,
            [(path, sha, mode) for path, (sha, mode) in state.items()],
        )
        commit.parents = [p.encode("ascii") for p in parents]
        commit.author = commit.committer = author.encode("utf-8")
        commit.author_time = commit.commit_time = commit_time
        commit.author_timezone = commit.commit_timezone = timezone
        commit.message = message.encode("utf-8")
        self.repo.object_store.add_object(commit)

        commit_id = commit.id.decode("ascii")
        self._states[commit_id] = state
        self.repo.refs[f"refs/heads/{branch}".encode()] = commit.id
        return commit_id

    def branch(self, name: str, commit_id: str) -> None:
        self.repo.refs[f"refs/heads/{name}".encode()] = commit_id.encode("ascii")

    def tag(self, name: str, commit_id: str, message: str | None = None) -> str:
        """Create a lightweight tag, or an annotated one if message is given."""
        target = commit_id.encode("ascii")
        if message is not None:
            tag = Tag()
            tag.name = name.encode()
            tag.object = (Commit, target)
            tag.tagger = DEFAULT_AUTHOR.encode()
            tag.tag_time = self._clock
            tag.tag_timezone = 0
            tag.message = message.encode("utf-8")
            self.repo.object_store.add_object(tag)
            target = tag.id
        self.repo.refs[f"refs/tags/{name}".encode()] = target
        return target.decode("ascii")
