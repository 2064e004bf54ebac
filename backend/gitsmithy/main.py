from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gitsmithy import __version__
from gitsmithy.config import get_settings
from gitsmithy.routers import git, repos
from gitsmithy.services.registry import registry


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry.load(settings.repos_root)
    yield


app = FastAPI(
    title=settings.app_name,
    description="Browse local git repositories and serve them over Smart HTTP",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(repos.router)


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name, "repos": len(registry.snapshot())}


@app.get("/")
async def root():
    return {"message": f"Welcome to {settings.app_name}", "docs": "/docs"}


# Catch-all /{repo}/... routes go last so they never shadow the API
app.include_router(git.router)
