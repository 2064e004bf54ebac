import posixpath

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, RedirectResponse

from gitsmithy.config import Settings, get_settings
from gitsmithy.routers.errors import http_error
from gitsmithy.schemas import (
    ChangeRead,
    CommitDetail,
    CommitRead,
    DirectoryRead,
    FileRead,
    LogRead,
    ReadmeRead,
    ReferenceRead,
    RefsRead,
    ReloadRead,
    RepoCreate,
    RepoDetail,
    RepoRead,
    TreeEntryRead,
    TreeRead,
)
from gitsmithy.services import diff_engine, history, revisions, tree_walker
from gitsmithy.services.errors import GitSmithyError, NoBranchesError
from gitsmithy.services.registry import RepositoryHandle, RepositoryRegistry, registry


router = APIRouter(prefix="/api/repos", tags=["repos"])


def get_registry() -> RepositoryRegistry:
    return registry


def _clone_url(request: Request, slug: str) -> str:
    base_url = str(request.base_url).rstrip("/")
    return f"{base_url}/{slug}"


def _repo_read(request: Request, handle: RepositoryHandle) -> RepoRead:
    return RepoRead(name=handle.slug, path=str(handle.path), clone_url=_clone_url(request, handle.slug))


def _get_handle(reg: RepositoryRegistry, slug: str) -> RepositoryHandle:
    try:
        return reg.get(slug)
    except GitSmithyError as e:
        raise http_error(e) from e


def _commit_read(summary: history.CommitSummary) -> CommitRead:
    return CommitRead(
        id=summary.id,
        short_id=summary.short_id,
        author=summary.author,
        author_email=summary.author_email,
        author_time=summary.author_time,
        committer=summary.committer,
        committer_email=summary.committer_email,
        timestamp=summary.timestamp,
        subject=summary.subject,
        message=summary.message,
        parents=list(summary.parents),
    )


def _text(content: bytes) -> str | None:
    if tree_walker.is_binary(content):
        return None
    return content.decode("utf-8", errors="replace")


@router.get("", response_model=list[RepoRead])
def list_repos(request: Request, reg: RepositoryRegistry = Depends(get_registry)):
    return [_repo_read(request, handle) for handle in reg.list()]


@router.post("", response_model=RepoRead, status_code=201)
def create_repo(repo: RepoCreate, request: Request, reg: RepositoryRegistry = Depends(get_registry)):
    """
    Initialize a new bare repository under the repositories root.

    Push an existing project to the returned clone_url:
        git remote add smithy <clone_url>
        git push smithy --all
    """
    try:
        handle = reg.create(repo.name)
    except GitSmithyError as e:
        raise http_error(e) from e
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Failed to initialize git repo: {e}")
    return _repo_read(request, handle)


@router.post("/reload", response_model=ReloadRead)
def reload_repos(reg: RepositoryRegistry = Depends(get_registry)):
    """Rescan the repositories root."""
    try:
        index = reg.reload()
    except GitSmithyError as e:
        raise http_error(e) from e
    return ReloadRead(root=str(reg.root), total=len(index))


@router.get("/{repo}", response_model=RepoDetail)
def get_repo(repo: str, request: Request, reg: RepositoryRegistry = Depends(get_registry)):
    handle = _get_handle(reg, repo)
    branches = revisions.list_branches(handle.repo)
    tags = revisions.list_tags(handle.repo)

    default_branch = head = None
    readme = None
    try:
        default_branch, head = revisions.resolve_default_branch(handle.repo)
    except NoBranchesError:
        # Fresh repository, nothing pushed yet
        pass
    else:
        readme_file = tree_walker.find_readme(handle.repo, head)
        if readme_file is not None:
            readme = ReadmeRead(path=readme_file.path, content=_text(readme_file.content))

    return RepoDetail(
        **_repo_read(request, handle).model_dump(),
        default_branch=default_branch,
        head=head,
        branches=[ReferenceRead.model_validate(ref) for ref in branches],
        tags=[ReferenceRead.model_validate(ref) for ref in tags],
        readme=readme,
    )


@router.get("/{repo}/refs", response_model=RefsRead)
def list_refs(repo: str, reg: RepositoryRegistry = Depends(get_registry)):
    """List all branches and tags."""
    handle = _get_handle(reg, repo)
    return RefsRead(
        branches=[ReferenceRead.model_validate(ref) for ref in revisions.list_branches(handle.repo)],
        tags=[ReferenceRead.model_validate(ref) for ref in revisions.list_tags(handle.repo)],
    )


@router.get("/{repo}/log")
def log_default_branch(repo: str, request: Request, reg: RepositoryRegistry = Depends(get_registry)):
    """Redirect to the log of the default branch."""
    handle = _get_handle(reg, repo)
    try:
        branch, _ = revisions.resolve_default_branch(handle.repo)
    except GitSmithyError as e:
        raise http_error(e) from e
    return RedirectResponse(url=f"{request.url.path.rstrip('/')}/{branch}", status_code=307)


@router.get("/{repo}/log/{ref:path}", response_model=LogRead)
def get_log(
    repo: str,
    ref: str,
    limit: int | None = Query(None, ge=1, description="Maximum commits to return"),
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """Commits reachable from ref, newest first, capped at the page size."""
    handle = _get_handle(reg, repo)
    page_size = min(limit, settings.page_size) if limit else settings.page_size
    try:
        commit_id = revisions.resolve_revision(handle.repo, ref)
        commits = [_commit_read(summary) for summary in history.log(handle.repo, commit_id, page_size)]
    except GitSmithyError as e:
        raise http_error(e) from e

    return LogRead(ref=ref, commit=commit_id, commits=commits, total=len(commits), limit=page_size)


def _tree_view(handle: RepositoryHandle, ref: str | None, path: str) -> DirectoryRead | FileRead:
    try:
        if ref is None:
            ref, commit_id = revisions.resolve_default_branch(handle.repo)
        else:
            commit_id = revisions.resolve_revision(handle.repo, ref)
        node = tree_walker.resolve(handle.repo, commit_id, path)
    except GitSmithyError as e:
        raise http_error(e) from e

    if isinstance(node, tree_walker.File):
        return FileRead(
            ref=ref,
            commit=commit_id,
            path=node.path,
            parent_path=node.parent_path,
            mode=node.entry.mode.value,
            id=node.entry.id,
            size=node.size,
            binary=node.is_binary,
            content=_text(node.content),
        )

    return DirectoryRead(
        ref=ref,
        commit=commit_id,
        path=node.path,
        parent_path=node.parent_path,
        entries=[
            TreeEntryRead(
                name=entry.name,
                path=posixpath.join(node.path, entry.name),
                mode=entry.mode.value,
                id=entry.id,
            )
            for entry in node.entries
        ],
    )


@router.get("/{repo}/tree", response_model=TreeRead)
def get_default_tree(repo: str, reg: RepositoryRegistry = Depends(get_registry)):
    """Root directory of the default branch."""
    return _tree_view(_get_handle(reg, repo), None, "")


@router.get("/{repo}/tree/{ref}", response_model=TreeRead)
def get_tree_root(repo: str, ref: str, reg: RepositoryRegistry = Depends(get_registry)):
    return _tree_view(_get_handle(reg, repo), ref, "")


@router.get("/{repo}/tree/{ref}/{path:path}", response_model=TreeRead)
def get_tree(repo: str, ref: str, path: str, reg: RepositoryRegistry = Depends(get_registry)):
    """A directory listing or a file's contents at ref."""
    return _tree_view(_get_handle(reg, repo), ref, path)


@router.get("/{repo}/commit/{commit_hash}", response_model=CommitDetail)
def get_commit(
    repo: str,
    commit_hash: str,
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """Commit metadata plus the unified diff against its first parent."""
    handle = _get_handle(reg, repo)
    try:
        commit_id = revisions.resolve_revision(handle.repo, commit_hash)
        summary = history.summarize(revisions.get_commit(handle.repo, commit_id))
        changes = diff_engine.commit_changes(handle.repo, commit_id)
        diffs = diff_engine.file_diffs(handle.repo, changes, settings.diff_context_lines)
    except GitSmithyError as e:
        raise http_error(e) from e

    return CommitDetail(
        commit=_commit_read(summary),
        is_root=not summary.parents,
        files=[
            ChangeRead(
                kind=f.change.kind.value,
                old_path=f.change.old_path,
                new_path=f.change.new_path,
                insertions=f.insertions,
                deletions=f.deletions,
                binary=f.binary,
            )
            for f in diffs
        ],
        insertions=sum(f.insertions for f in diffs),
        deletions=sum(f.deletions for f in diffs),
        diff=diff_engine.FILE_SEPARATOR.join(f.text for f in diffs),
    )


@router.get("/{repo}/patch/{commit_hash}", response_class=PlainTextResponse)
def get_patch(
    repo: str,
    commit_hash: str,
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """The commit as a format-patch style email."""
    handle = _get_handle(reg, repo)
    try:
        commit_id = revisions.resolve_revision(handle.repo, commit_hash)
        patch = diff_engine.render_patch_email(handle.repo, commit_id, settings.diff_context_lines)
    except GitSmithyError as e:
        raise http_error(e) from e
    return PlainTextResponse(patch)
