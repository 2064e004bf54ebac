"""
Commit history - a bounded walk from a starting commit.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parseaddr
from typing import Iterator

from dulwich.objects import Commit
from dulwich.repo import Repo as DulwichRepo
from dulwich.walk import ORDER_DATE, Walker

from gitsmithy.services.revisions import get_commit

PAGE_SIZE = 500
SHORT_ID_LENGTH = 8


@dataclass(frozen=True)
class CommitSummary:
    id: str
    short_id: str
    author: str
    author_email: str
    author_time: datetime
    committer: str
    committer_email: str
    timestamp: datetime  # Committer time
    subject: str
    message: str
    parents: tuple[str, ...]


def _decode(value: bytes, encoding: bytes | None) -> str:
    codec = encoding.decode("ascii") if encoding else "utf-8"
    try:
        return value.decode(codec, errors="replace")
    except LookupError:
        return value.decode("utf-8", errors="replace")


def split_identity(identity: str) -> tuple[str, str]:
    """Split 'Name <email>' into (name, email)."""
    name, email = parseaddr(identity)
    if not name and not email:
        return identity.strip(), ""
    return name or identity.split("<", 1)[0].strip(), email


def to_datetime(timestamp: int, offset: int) -> datetime:
    """Convert a git timestamp and its UTC offset in seconds to an aware datetime."""
    return datetime.fromtimestamp(timestamp, timezone(timedelta(seconds=offset)))


def subject_of(message: str) -> str:
    """The message text up to the first line break, LF or CRLF."""
    return message.split("\n", 1)[0].rstrip("\r")


def summarize(commit: Commit) -> CommitSummary:
    message = _decode(commit.message, commit.encoding)
    author, author_email = split_identity(_decode(commit.author, commit.encoding))
    committer, committer_email = split_identity(_decode(commit.committer, commit.encoding))
    commit_id = commit.id.decode("ascii")
    return CommitSummary(
        id=commit_id,
        short_id=commit_id[:SHORT_ID_LENGTH],
        author=author,
        author_email=author_email,
        author_time=to_datetime(commit.author_time, commit.author_timezone),
        committer=committer,
        committer_email=committer_email,
        timestamp=to_datetime(commit.commit_time, commit.commit_timezone),
        subject=subject_of(message),
        message=message,
        parents=tuple(parent.decode("ascii") for parent in commit.parents),
    )


def log(repo: DulwichRepo, start_commit_id: str, limit: int = PAGE_SIZE) -> Iterator[CommitSummary]:
    """
    Walk history from start_commit_id, newest committer time first.

    Lazily yields at most limit summaries and stops early at the root of
    history. The iterator cannot be restarted; callers wanting the next
    page start a new walk from a later commit.
    """
    # Fail before the first next() if the start point is bogus
    get_commit(repo, start_commit_id)
    return _walk(repo, start_commit_id, limit)


def _walk(repo: DulwichRepo, start_commit_id: str, limit: int) -> Iterator[CommitSummary]:
    if limit <= 0:
        return
    walker = Walker(
        repo.object_store,
        [start_commit_id.encode("ascii")],
        order=ORDER_DATE,
        max_entries=limit,
    )
    for entry in walker:
        yield summarize(entry.commit)
