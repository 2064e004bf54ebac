from datetime import datetime

from pydantic import BaseModel


class CommitRead(BaseModel):
    id: str
    short_id: str
    author: str
    author_email: str
    author_time: datetime
    committer: str
    committer_email: str
    timestamp: datetime
    subject: str
    message: str
    parents: list[str]


class LogRead(BaseModel):
    ref: str
    commit: str
    commits: list[CommitRead]
    total: int
    limit: int


class ChangeRead(BaseModel):
    kind: str  # add, delete, modify or rename
    old_path: str | None
    new_path: str | None
    insertions: int
    deletions: int
    binary: bool


class CommitDetail(BaseModel):
    commit: CommitRead
    is_root: bool
    files: list[ChangeRead]
    insertions: int
    deletions: int
    diff: str
