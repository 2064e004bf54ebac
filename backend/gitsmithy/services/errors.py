"""
Error taxonomy for the repository query layer and the Smart HTTP gateway.

Services raise these; routers translate them into HTTP status codes.
"""


class GitSmithyError(Exception):
    """Base exception for all gitsmithy errors."""
    pass


class NotFoundError(GitSmithyError):
    """Something the caller asked for does not exist."""
    pass


class RepositoryNotFoundError(NotFoundError):
    """No repository is registered under the requested slug."""

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Repository {slug!r} not found")


class RevisionNotFoundError(NotFoundError):
    """Text does not name a branch, tag or commit hash."""

    def __init__(self, revision: str):
        self.revision = revision
        super().__init__(f"Revision {revision!r} not found")


class NoBranchesError(NotFoundError):
    """The repository has no branches, so there is no default branch."""

    def __init__(self):
        super().__init__("no branches")


class CommitNotFoundError(NotFoundError):
    """A commit id does not resolve to a commit object."""

    def __init__(self, commit_id: str):
        self.commit_id = commit_id
        super().__init__(f"Commit {commit_id!r} not found")


class PathNotFoundError(NotFoundError):
    """No tree entry matches the requested path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path {path!r} not found")


class NoParentError(GitSmithyError):
    """
    The commit has no parent but the operation needs one.

    Kept outside NotFoundError so callers can tell a root commit
    apart from a failed lookup.
    """

    def __init__(self, commit_id: str):
        self.commit_id = commit_id
        super().__init__(f"Commit {commit_id[:8]} has no parent")


class InternalError(GitSmithyError):
    """Backend, subprocess or I/O failure."""
    pass


class RegistryError(InternalError):
    """The repositories root could not be listed."""
    pass


class GatewayError(InternalError):
    """The git subprocess could not be spawned or its pipes failed."""
    pass


class InvalidServiceError(GitSmithyError):
    """Smart HTTP service name is not upload-pack or receive-pack."""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Invalid service: {service}")


class InvalidRepositoryNameError(GitSmithyError):
    """A repository name cannot be used as a slug."""
    pass


class RepositoryExistsError(GitSmithyError):
    """A directory with the requested slug already exists."""

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Repository {slug} already exists")
