"""
Unit tests for RepositoryRegistry - discovers repositories under a root.

These tests verify:
- Scanning picks up bare and non-bare repositories
- Non-repository entries are skipped silently
- Lookup hits and misses
- Reload replaces the snapshot atomically
- Creating new bare repositories
"""
import threading

import pytest
from dulwich.repo import Repo

from gitsmithy.services.errors import (
    InvalidRepositoryNameError,
    RegistryError,
    RepositoryExistsError,
    RepositoryNotFoundError,
)
from gitsmithy.services.registry import RepositoryRegistry, validate_slug

from shared import RepoBuilder


# -----------------------------------------------------------------------------
# Load Tests
# -----------------------------------------------------------------------------

class TestLoad:
    """Tests for RepositoryRegistry.load()."""

    def test_load_finds_bare_repo(self, repos_root, registry):
        """A bare repository directory is registered under its name."""
        RepoBuilder(repos_root / "alpha")
        index = registry.load()
        assert set(index) == {"alpha"}
        assert index["alpha"].path == repos_root / "alpha"

    def test_load_finds_working_tree_repo(self, repos_root, registry):
        """A directory with a .git subdirectory is registered too."""
        (repos_root / "project").mkdir()
        Repo.init(str(repos_root / "project"))
        index = registry.load()
        assert "project" in index

    def test_load_skips_plain_directories(self, repos_root, registry):
        """Directories that are not repositories are ignored."""
        RepoBuilder(repos_root / "alpha")
        (repos_root / "notes").mkdir()
        index = registry.load()
        assert set(index) == {"alpha"}

    def test_load_skips_files(self, repos_root, registry):
        """Regular files in the root are ignored."""
        RepoBuilder(repos_root / "alpha")
        (repos_root / "todo.txt").write_text("nothing here")
        index = registry.load()
        assert set(index) == {"alpha"}

    def test_load_empty_root(self, registry):
        """An empty root yields an empty index."""
        assert len(registry.load()) == 0

    def test_load_missing_root_raises(self, repos_root):
        """A root that cannot be listed is a RegistryError."""
        registry = RepositoryRegistry(repos_root / "missing")
        with pytest.raises(RegistryError):
            registry.load()

    def test_load_without_root_raises(self):
        """Loading with no root configured is a RegistryError."""
        with pytest.raises(RegistryError):
            RepositoryRegistry().load()

    def test_load_with_explicit_root_sets_root(self, repos_root):
        """Passing a root remembers it for later reloads."""
        registry = RepositoryRegistry()
        registry.load(repos_root)
        assert registry.root == repos_root

    def test_snapshot_is_read_only(self, repos_root, registry):
        """The published index cannot be mutated in place."""
        RepoBuilder(repos_root / "alpha")
        index = registry.load()
        with pytest.raises(TypeError):
            index["beta"] = index["alpha"]


# -----------------------------------------------------------------------------
# Lookup Tests
# -----------------------------------------------------------------------------

class TestLookup:
    """Tests for lookup(), get() and list()."""

    def test_lookup_hit(self, repos_root, registry):
        RepoBuilder(repos_root / "alpha")
        registry.load()
        handle = registry.lookup("alpha")
        assert handle is not None
        assert handle.slug == "alpha"

    def test_lookup_miss_returns_none(self, registry):
        registry.load()
        assert registry.lookup("nope") is None

    def test_get_miss_raises(self, registry):
        """get() raises RepositoryNotFoundError on a miss."""
        registry.load()
        with pytest.raises(RepositoryNotFoundError):
            registry.get("nope")

    def test_list_is_sorted(self, repos_root, registry):
        """list() returns handles sorted by slug."""
        for name in ("zeta", "alpha", "mu"):
            RepoBuilder(repos_root / name)
        registry.load()
        assert [h.slug for h in registry.list()] == ["alpha", "mu", "zeta"]


# -----------------------------------------------------------------------------
# Reload Tests
# -----------------------------------------------------------------------------

class TestReload:
    """Tests for reload() and snapshot replacement."""

    def test_reload_picks_up_new_repos(self, repos_root, registry):
        RepoBuilder(repos_root / "alpha")
        registry.load()
        RepoBuilder(repos_root / "beta")
        assert registry.lookup("beta") is None

        registry.reload()
        assert registry.lookup("beta") is not None

    def test_old_snapshot_unchanged_after_reload(self, repos_root, registry):
        """A snapshot taken before a reload keeps its contents."""
        RepoBuilder(repos_root / "alpha")
        before = registry.load()
        RepoBuilder(repos_root / "beta")
        registry.reload()
        assert set(before) == {"alpha"}
        assert set(registry.snapshot()) == {"alpha", "beta"}

    def test_handle_survives_reload(self, repos_root, registry, demo_repo):
        """Handles obtained before a reload remain usable."""
        registry.load()
        handle = registry.get("demo")
        registry.reload()
        assert handle.repo.refs[b"refs/heads/main"].decode() == demo_repo["third"]

    def test_concurrent_reads_during_reload(self, repos_root, registry):
        """Readers always see either the old or the new index."""
        RepoBuilder(repos_root / "alpha")
        registry.load()
        seen = []

        def reader():
            for _ in range(200):
                seen.append(set(registry.snapshot()))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        RepoBuilder(repos_root / "beta")
        registry.reload()
        for t in threads:
            t.join()

        assert all(s in ({"alpha"}, {"alpha", "beta"}) for s in seen)


# -----------------------------------------------------------------------------
# Create Tests
# -----------------------------------------------------------------------------

class TestCreate:
    """Tests for create() and slug validation."""

    def test_create_bare_repo(self, repos_root, registry):
        registry.load()
        handle = registry.create("fresh")
        assert handle.path == repos_root / "fresh"
        assert handle.repo.bare
        assert registry.lookup("fresh") is handle

    def test_create_existing_raises(self, repos_root, registry):
        RepoBuilder(repos_root / "alpha")
        registry.load()
        with pytest.raises(RepositoryExistsError):
            registry.create("alpha")

    def test_concurrent_creates_one_wins(self, registry):
        """Racing creates of one slug yield one repository and conflicts."""
        registry.load()
        barrier = threading.Barrier(8)
        results = []

        def create():
            barrier.wait()
            try:
                registry.create("racy")
                results.append("created")
            except RepositoryExistsError:
                results.append("exists")

        threads = [threading.Thread(target=create) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(results) == ["created"] + ["exists"] * 7
        assert registry.lookup("racy") is not None

    def test_failed_init_removes_directory(self, repos_root, registry, monkeypatch):
        def fail_init_bare(path, *args, **kwargs):
            raise OSError("disk full")

        registry.load()
        monkeypatch.setattr(Repo, "init_bare", fail_init_bare)
        with pytest.raises(OSError, match="disk full"):
            registry.create("broken")
        assert not (repos_root / "broken").exists()
        assert registry.lookup("broken") is None

    def test_create_survives_reload(self, registry):
        """A created repository is found again by a fresh scan."""
        registry.load()
        registry.create("fresh")
        registry.reload()
        assert registry.lookup("fresh") is not None

    @pytest.mark.parametrize("slug", ["", ".", "..", ".hidden", "a/b", "a\\b", "nul\x00"])
    def test_invalid_slugs_rejected(self, slug):
        with pytest.raises(InvalidRepositoryNameError):
            validate_slug(slug)

    def test_valid_slug_accepted(self):
        validate_slug("my-project_2.0")
