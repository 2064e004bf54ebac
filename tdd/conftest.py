"""
Root conftest.py - Shared fixtures for all test types.

This file is automatically loaded by pytest and provides:
- Temporary repository roots and fixture repositories
- A registry loaded from the temporary root
- FastAPI test client wired to that registry
"""
import shutil
import sys
import tempfile
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Add backend and the test root (for `shared`) to path for imports
tdd_path = Path(__file__).parent
backend_path = tdd_path.parent / "backend"
sys.path.insert(0, str(backend_path))
sys.path.insert(0, str(tdd_path))

from gitsmithy.config import Settings, get_settings
from gitsmithy.main import app
from gitsmithy.routers.repos import get_registry
from gitsmithy.services.registry import RepositoryRegistry

from shared import RepoBuilder


# -----------------------------------------------------------------------------
# Repository Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def repos_root():
    """Create a temporary directory to hold test repositories.

    Uses resolve() to get the full path and avoid Windows 8.3 short name issues
    that can cause dulwich init_bare to fail.
    """
    temp_dir = Path(tempfile.mkdtemp()).resolve()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def builder(repos_root) -> RepoBuilder:
    """An empty bare repository named 'demo' under repos_root."""
    return RepoBuilder(repos_root / "demo")


@pytest.fixture
def demo_repo(builder) -> dict[str, str]:
    """A small history on main plus a feature branch and two tags.

    Returns the commit ids by name.
    """
    commits = {}
    commits["initial"] = builder.commit(
        "Initial commit",
        files={
            "README.md": b"# Demo\n\nA demo repository.\n",
            "src/app.py": b"print('hello')\n",
        },
    )
    commits["second"] = builder.commit(
        "Add helper module\n\nThe helper is used by app.py.\n",
        files={
            "src/helper.py": b"def helper():\n    return 42\n",
            "src/app.py": b"from helper import helper\n\nprint(helper())\n",
        },
    )
    commits["third"] = builder.commit(
        "Rename docs",
        files={"docs/guide.txt": b"Read me first.\n"},
    )
    builder.branch("feature", commits["second"])
    commits["feature"] = builder.commit(
        "Feature work",
        files={"feature.txt": b"wip\n"},
        branch="feature",
    )
    builder.tag("v1.0", commits["second"])
    builder.tag("v1.1", commits["third"], message="Release 1.1")
    return commits


@pytest.fixture
def registry(repos_root) -> RepositoryRegistry:
    """A registry over repos_root. Call load() after creating repositories."""
    return RepositoryRegistry(repos_root)


# -----------------------------------------------------------------------------
# API Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def test_settings(repos_root) -> Settings:
    return Settings(repos_root=repos_root)


@pytest_asyncio.fixture
async def client(registry, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing.

    The app is wired to a registry over the temporary root. Repositories
    created before the first request are visible; later ones need a reload.
    """
    registry.load()
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# -----------------------------------------------------------------------------
# Marker-based fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _mark_test(request):
    """Automatically apply markers based on test location."""
    if "unit" in str(request.fspath):
        request.applymarker(pytest.mark.unit)
    elif "integration" in str(request.fspath):
        request.applymarker(pytest.mark.integration)
