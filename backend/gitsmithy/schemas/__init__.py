from gitsmithy.schemas.repo import (
    ReadmeRead,
    ReferenceRead,
    RefsRead,
    ReloadRead,
    RepoCreate,
    RepoDetail,
    RepoRead,
)
from gitsmithy.schemas.tree import DirectoryRead, FileRead, TreeEntryRead, TreeRead
from gitsmithy.schemas.commit import ChangeRead, CommitDetail, CommitRead, LogRead

__all__ = [
    "ReadmeRead",
    "ReferenceRead",
    "RefsRead",
    "ReloadRead",
    "RepoCreate",
    "RepoDetail",
    "RepoRead",
    "DirectoryRead",
    "FileRead",
    "TreeEntryRead",
    "TreeRead",
    "ChangeRead",
    "CommitDetail",
    "CommitRead",
    "LogRead",
]
