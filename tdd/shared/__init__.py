# Cross-cutting test utilities shared across all test types

from .repo_builder import RepoBuilder, git_available

__all__ = [
    "RepoBuilder",
    "git_available",
]
