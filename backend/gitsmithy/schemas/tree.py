from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class TreeEntryRead(BaseModel):
    name: str
    path: str
    mode: str  # file, executable, directory, symlink or submodule
    id: str


class DirectoryRead(BaseModel):
    kind: Literal["directory"] = "directory"
    ref: str
    commit: str
    path: str
    parent_path: str
    entries: list[TreeEntryRead]


class FileRead(BaseModel):
    kind: Literal["file"] = "file"
    ref: str
    commit: str
    path: str
    parent_path: str
    mode: str
    id: str
    size: int
    binary: bool
    content: str | None  # None for binary files


TreeRead = Annotated[Union[DirectoryRead, FileRead], Field(discriminator="kind")]
