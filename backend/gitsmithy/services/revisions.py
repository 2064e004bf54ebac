"""
Revision resolution - refs, default branch and commit-ish lookup.
"""

import re
from dataclasses import dataclass

from dulwich.objects import Commit, Tag
from dulwich.objectspec import AmbiguousShortId, parse_commit
from dulwich.refs import check_ref_format
from dulwich.repo import Repo as DulwichRepo

from gitsmithy.services.errors import (
    CommitNotFoundError,
    NoBranchesError,
    RevisionNotFoundError,
)

BRANCH_PREFIX = b"refs/heads"
TAG_PREFIX = b"refs/tags"

# Preferred default branches, in order
DEFAULT_BRANCH_NAMES = ("main", "master")

_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


@dataclass(frozen=True)
class Reference:
    name: str  # Fully qualified, e.g. refs/heads/main
    short_name: str
    target: str  # Commit id; annotated tags are peeled


def _collect_refs(repo: DulwichRepo, prefix: bytes) -> list[Reference]:
    refs = []
    for short_name in sorted(repo.refs.as_dict(prefix)):
        full_name = prefix + b"/" + short_name
        try:
            target = repo.get_peeled(full_name)
        except KeyError:
            # Dangling symbolic ref
            continue
        refs.append(Reference(
            name=full_name.decode("utf-8", errors="replace"),
            short_name=short_name.decode("utf-8", errors="replace"),
            target=target.decode("ascii"),
        ))
    return refs


def list_branches(repo: DulwichRepo) -> list[Reference]:
    """All branches, sorted by name."""
    return _collect_refs(repo, BRANCH_PREFIX)


def list_tags(repo: DulwichRepo) -> list[Reference]:
    """All tags, sorted by name."""
    return _collect_refs(repo, TAG_PREFIX)


def resolve_revision(repo: DulwichRepo, revision: str) -> str:
    """
    Resolve a branch, tag, ref name or (abbreviated) hash to a commit id.

    Raises RevisionNotFoundError if nothing matches or a short hash is
    ambiguous.
    """
    if not revision:
        raise RevisionNotFoundError(revision)
    raw = revision.encode("utf-8")
    # Rejects traversal like ../ before dulwich turns it into a file path
    if not check_ref_format(BRANCH_PREFIX + b"/" + raw):
        raise RevisionNotFoundError(revision)

    try:
        obj = parse_commit(repo, raw)
        while isinstance(obj, Tag):
            obj = repo.object_store[obj.object[1]]
    except (KeyError, ValueError, AmbiguousShortId):
        raise RevisionNotFoundError(revision) from None
    if not isinstance(obj, Commit):
        raise RevisionNotFoundError(revision)
    return obj.id.decode("ascii")


def resolve_default_branch(repo: DulwichRepo) -> tuple[str, str]:
    """
    Pick the branch to show when a URL names none.

    main beats master; otherwise the first branch by name.
    Returns (branch_name, commit_id).
    """
    names = [ref.short_name for ref in list_branches(repo)]
    if not names:
        raise NoBranchesError()

    branch = next((name for name in DEFAULT_BRANCH_NAMES if name in names), names[0])
    return branch, resolve_revision(repo, branch)


def get_commit(repo: DulwichRepo, commit_id: str) -> Commit:
    """Load a commit by its full hex id."""
    commit_id = commit_id.lower()
    if not _FULL_SHA_RE.match(commit_id):
        raise CommitNotFoundError(commit_id)
    try:
        obj = repo.object_store[commit_id.encode("ascii")]
    except KeyError:
        raise CommitNotFoundError(commit_id) from None
    if not isinstance(obj, Commit):
        raise CommitNotFoundError(commit_id)
    return obj
