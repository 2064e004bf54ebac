from pydantic import BaseModel
from functools import lru_cache
from pathlib import Path
import os


class Settings(BaseModel):
    app_name: str = "gitsmithy"
    repos_root: Path = Path.home() / "Projects"
    cors_origins: list[str] = ["http://localhost:5173"]
    host: str = "localhost"
    port: int = 3456
    page_size: int = 500  # Hard cap on commits returned by a single log request
    diff_context_lines: int = 3
    git_binary: str = "git"  # Used for the Smart HTTP subprocesses only


@lru_cache
def get_settings() -> Settings:
    return Settings(
        repos_root=Path(os.getenv("GITSMITHY_ROOT", str(Path.home() / "Projects"))).expanduser(),
        host=os.getenv("GITSMITHY_HOST", "localhost"),
        port=int(os.getenv("GITSMITHY_PORT", "3456")),
        page_size=int(os.getenv("GITSMITHY_PAGE_SIZE", "500")),
        diff_context_lines=int(os.getenv("GITSMITHY_DIFF_CONTEXT", "3")),
        git_binary=os.getenv("GITSMITHY_GIT", "git"),
    )
