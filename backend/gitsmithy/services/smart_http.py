"""
Git Smart HTTP gateway.

Each call spawns one `git <service> --stateless-rpc` child, feeds it the
request body and streams its stdout back. Nothing is pooled or shared
between requests.
"""

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

from gitsmithy.services.errors import GatewayError, InvalidServiceError

logger = logging.getLogger(__name__)

UPLOAD_PACK = "upload-pack"
RECEIVE_PACK = "receive-pack"
SERVICES = (UPLOAD_PACK, RECEIVE_PACK)

FLUSH_PKT = b"0000"

# Read size for the child's stdout
CHUNK_SIZE = 64 * 1024


def pkt_line(data: bytes) -> bytes:
    """Create a pkt-line (4 hex length prefix + data)."""
    return f"{len(data) + 4:04x}".encode() + data


def normalize_service(service: str) -> str:
    """Accept 'git-upload-pack' or 'upload-pack'; return the bare name."""
    name = service[4:] if service.startswith("git-") else service
    if name not in SERVICES:
        raise InvalidServiceError(service)
    return name


def service_header(service: str) -> bytes:
    """The '# service=...' announcement that precedes a ref advertisement."""
    name = normalize_service(service)
    return pkt_line(f"# service=git-{name}\n".encode()) + FLUSH_PKT


def advertisement_content_type(service: str) -> str:
    return f"application/x-git-{normalize_service(service)}-advertisement"


def result_content_type(service: str) -> str:
    return f"application/x-git-{normalize_service(service)}-result"


@dataclass
class GitProcessResult:
    """What happened to one git child after its output was consumed."""
    returncode: int | None = None
    bytes_out: int = 0
    stderr: bytes = b""
    killed: bool = False
    sink_error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and self.sink_error is None


Sink = Callable[[bytes], Awaitable[None]]


def _kill_group(process: asyncio.subprocess.Process) -> None:
    if not hasattr(os, "killpg"):
        process.kill()
        return
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        # Exited between the returncode check and the signal
        pass


class GitProcess:
    """
    One git child process with its stdin fed from a byte string.

    start() spawns the child and raises GatewayError if that fails, so
    callers can turn a spawn failure into a status code before any
    response bytes go out. stream() then yields stdout in chunks while a
    separate task writes stdin, so neither pipe can block the other.
    Abandoning the stream (cancellation or a client disconnect) kills
    the child.
    """

    def __init__(
        self,
        service: str,
        args: list[str],
        input: bytes = b"",
        git_binary: str = "git",
        git_protocol: str | None = None,
        prefix: bytes = b"",
        content_type: str = "application/octet-stream",
    ):
        self.service = normalize_service(service)
        self.args = args
        self.input = input
        self.git_binary = git_binary
        self.git_protocol = git_protocol
        self.prefix = prefix
        self.content_type = content_type
        self.result = GitProcessResult()
        self._process: asyncio.subprocess.Process | None = None
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @property
    def command(self) -> list[str]:
        return [self.git_binary, self.service, *self.args]

    async def start(self) -> None:
        if self._process is not None:
            return

        env = os.environ.copy()
        if self.git_protocol:
            env["GIT_PROTOCOL"] = self.git_protocol

        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                # Own process group so pack-objects helpers die with git
                start_new_session=True,
            )
        except OSError as e:
            raise GatewayError(f"Failed to spawn {' '.join(self.command)}: {e}") from e
        logger.info(f"Spawned git {self.service} (pid {self._process.pid}, {len(self.input)} bytes in)")

    async def _feed_stdin(self) -> None:
        stdin = self._process.stdin
        try:
            if self.input:
                stdin.write(self.input)
                await stdin.drain()
            stdin.close()
            await stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            # git may stop reading early, e.g. after rejecting the request
            logger.debug(f"git {self.service} closed stdin before reading all input")

    async def stream(self) -> AsyncIterator[bytes]:
        await self.start()
        process = self._process
        writer = asyncio.create_task(self._feed_stdin())
        stderr_reader = asyncio.create_task(process.stderr.read())
        self._tasks = [writer, stderr_reader]
        try:
            if self.prefix:
                self.result.bytes_out += len(self.prefix)
                yield self.prefix
            while True:
                chunk = await process.stdout.read(CHUNK_SIZE)
                if not chunk:
                    break
                self.result.bytes_out += len(chunk)
                yield chunk

            await writer
            self.result.stderr = await stderr_reader
            self.result.returncode = await process.wait()
            if self.result.returncode != 0:
                # Headers are already out; the status code stays as sent
                logger.error(
                    f"git {self.service} exited with {self.result.returncode}: "
                    f"{self.result.stderr.decode('utf-8', errors='replace').strip()}"
                )
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        """
        Kill the child if it is still running and stop the pipe tasks.

        Safe to call more than once, and whether or not stream() was ever
        iterated. An unstarted async generator never runs its finally
        block, so the response layer calls this directly.
        """
        if self._closed or self._process is None:
            return
        self._closed = True

        process = self._process
        if process.returncode is None:
            _kill_group(process)
            self.result.killed = True
            self.result.returncode = await process.wait()
            logger.warning(f"Killed git {self.service} (pid {process.pid}) before it finished")
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def run(self, sink: Sink) -> GitProcessResult:
        """
        Pump all output into sink and return the result.

        A failing sink stops the pump and kills the child. The failure is
        recorded on the result, not raised.
        """
        chunks = self.stream()
        try:
            async for chunk in chunks:
                try:
                    await sink(chunk)
                except Exception as e:
                    self.result.sink_error = e
                    logger.warning(f"Output sink for git {self.service} failed: {e}")
                    break
        finally:
            await chunks.aclose()
        return self.result


async def advertise_refs(
    repo_path: Path,
    service: str,
    git_binary: str = "git",
    git_protocol: str | None = None,
) -> GitProcess:
    """
    Start a ref advertisement for GET /info/refs.

    The stream begins with the service header packet and a flush packet,
    followed by git's own output unchanged.
    """
    name = normalize_service(service)
    process = GitProcess(
        name,
        ["--stateless-rpc", "--advertise-refs", str(repo_path)],
        git_binary=git_binary,
        git_protocol=git_protocol,
        prefix=service_header(name),
        content_type=advertisement_content_type(name),
    )
    await process.start()
    return process


async def service_rpc(
    repo_path: Path,
    service: str,
    body: bytes,
    git_binary: str = "git",
    git_protocol: str | None = None,
) -> GitProcess:
    """Start one stateless RPC round with body as the child's stdin."""
    name = normalize_service(service)
    process = GitProcess(
        name,
        ["--stateless-rpc", str(repo_path)],
        input=body,
        git_binary=git_binary,
        git_protocol=git_protocol,
        content_type=result_content_type(name),
    )
    await process.start()
    return process


async def upload_pack(repo_path: Path, body: bytes, **kwargs) -> GitProcess:
    return await service_rpc(repo_path, UPLOAD_PACK, body, **kwargs)


async def receive_pack(repo_path: Path, body: bytes, **kwargs) -> GitProcess:
    return await service_rpc(repo_path, RECEIVE_PACK, body, **kwargs)
