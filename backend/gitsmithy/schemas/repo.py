from pydantic import BaseModel


class RepoCreate(BaseModel):
    """Create a new bare repository under the repositories root."""
    name: str


class RepoRead(BaseModel):
    name: str
    path: str
    clone_url: str


class ReferenceRead(BaseModel):
    name: str
    short_name: str
    target: str

    class Config:
        from_attributes = True


class RefsRead(BaseModel):
    branches: list[ReferenceRead]
    tags: list[ReferenceRead]


class ReadmeRead(BaseModel):
    path: str
    content: str | None  # None when the README is binary


class RepoDetail(RepoRead):
    default_branch: str | None  # None for a repository with no branches
    head: str | None
    branches: list[ReferenceRead]
    tags: list[ReferenceRead]
    readme: ReadmeRead | None = None


class ReloadRead(BaseModel):
    """Response from the reload endpoint."""
    root: str
    total: int
