"""
Git HTTP smart protocol endpoints.

Implements the server side of git clone/fetch/push over HTTP. Routes sit
at the root so the clone URL is http://host/{repo}.
"""

import gzip
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import StreamingResponse

from gitsmithy.config import Settings, get_settings
from gitsmithy.routers.errors import http_error
from gitsmithy.routers.repos import get_registry
from gitsmithy.services import revisions, smart_http
from gitsmithy.services.errors import GitSmithyError, NoBranchesError
from gitsmithy.services.registry import RepositoryRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["git"])

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


async def get_request_body(request: Request) -> bytes:
    """Get request body, decompressing gzip if needed."""
    body = await request.body()
    content_encoding = request.headers.get("content-encoding", "").lower()

    if content_encoding == "gzip":
        try:
            body = gzip.decompress(body)
        except (OSError, EOFError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid gzip request body: {e}")
        logger.debug(f"Decompressed gzip request body: {len(body)} bytes")

    return body


class GitStreamingResponse(StreamingResponse):
    """
    Streams a spawned git child and always reaps it.

    The child is closed even when the body iterator is never pulled, e.g.
    when the client disconnects while the response start is being sent.
    """

    def __init__(self, process: smart_http.GitProcess):
        super().__init__(
            process.stream(),
            media_type=process.content_type,
            headers=NO_CACHE_HEADERS,
        )
        self.process = process

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.process.aclose()


async def _service_rpc(
    repo: str,
    service: str,
    request: Request,
    reg: RepositoryRegistry,
    settings: Settings,
) -> GitStreamingResponse:
    try:
        handle = reg.get(repo)
    except GitSmithyError as e:
        raise http_error(e) from e

    body = await get_request_body(request)
    try:
        # Spawn before the response starts so a failure is still a 500
        process = await smart_http.service_rpc(
            handle.path,
            service,
            body,
            git_binary=settings.git_binary,
            git_protocol=request.headers.get("git-protocol"),
        )
    except GitSmithyError as e:
        raise http_error(e) from e
    return GitStreamingResponse(process)


@router.get("/{repo}/info/refs")
async def get_info_refs(
    repo: str,
    request: Request,
    service: str = Query(..., description="git-upload-pack or git-receive-pack"),
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """
    Refs discovery endpoint for git clone/fetch/push.

    GET /{repo}/info/refs?service=git-upload-pack  (clone/fetch)
    GET /{repo}/info/refs?service=git-receive-pack (push)
    """
    try:
        handle = reg.get(repo)
        process = await smart_http.advertise_refs(
            handle.path,
            service,
            git_binary=settings.git_binary,
            git_protocol=request.headers.get("git-protocol"),
        )
    except GitSmithyError as e:
        raise http_error(e) from e
    return GitStreamingResponse(process)


@router.post("/{repo}/git-upload-pack")
async def git_upload_pack(
    repo: str,
    request: Request,
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """Handle git clone/fetch pack negotiation."""
    return await _service_rpc(repo, smart_http.UPLOAD_PACK, request, reg, settings)


@router.post("/{repo}/git-receive-pack")
async def git_receive_pack(
    repo: str,
    request: Request,
    reg: RepositoryRegistry = Depends(get_registry),
    settings: Settings = Depends(get_settings),
):
    """Handle git push pack reception."""
    return await _service_rpc(repo, smart_http.RECEIVE_PACK, request, reg, settings)


@router.get("/{repo}/HEAD")
async def get_head(repo: str, reg: RepositoryRegistry = Depends(get_registry)):
    """Get HEAD reference (required by some git clients)."""
    try:
        handle = reg.get(repo)
    except GitSmithyError as e:
        raise http_error(e) from e

    # Raw HEAD file contents: "ref: refs/heads/<name>" or a detached commit id
    head = handle.repo.refs.read_ref(b"HEAD")
    if head is not None:
        content = head.decode("utf-8", errors="replace") + "\n"
    else:
        try:
            default_branch, _ = revisions.resolve_default_branch(handle.repo)
        except NoBranchesError:
            default_branch = revisions.DEFAULT_BRANCH_NAMES[0]
        content = f"ref: refs/heads/{default_branch}\n"

    return Response(
        content=content,
        media_type="text/plain",
        headers={"Cache-Control": "no-cache"},
    )
