"""
Unit tests for the Smart HTTP gateway.

These tests verify:
- pkt-line framing and the service announcement header
- Service name validation
- Child process plumbing: stdin feeding, streaming, exit codes,
  GIT_PROTOCOL forwarding, spawn failures, sink failures, cancellation
- Real git upload-pack and receive-pack advertisements (skipped without git)
"""
import asyncio
import stat
import sys

import pytest

from gitsmithy.services import smart_http
from gitsmithy.services.errors import GatewayError, InvalidServiceError

from shared import git_available

requires_git = pytest.mark.skipif(not git_available(), reason="git binary not installed")
requires_posix = pytest.mark.skipif(sys.platform == "win32", reason="uses /bin/sh scripts")


@pytest.fixture
def fake_git(tmp_path):
    """Factory for stand-in git executables that ignore their arguments."""
    def make(script: str):
        path = tmp_path / "fake-git"
        path.write_text(f"#!/bin/sh\n{script}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return str(path)
    return make


async def _collect(process: smart_http.GitProcess) -> bytes:
    return b"".join([chunk async for chunk in process.stream()])


# -----------------------------------------------------------------------------
# Framing Tests
# -----------------------------------------------------------------------------

class TestPktLine:
    """Tests for pkt_line() and service_header()."""

    def test_pkt_line_length_prefix(self):
        """Length includes the 4-byte prefix itself."""
        assert smart_http.pkt_line(b"hello\n") == b"000ahello\n"

    def test_pkt_line_empty(self):
        assert smart_http.pkt_line(b"") == b"0004"

    def test_upload_pack_header(self):
        assert smart_http.service_header("upload-pack") == b"001e# service=git-upload-pack\n0000"

    def test_receive_pack_header(self):
        assert smart_http.service_header("git-receive-pack") == b"001f# service=git-receive-pack\n0000"


class TestServiceNames:
    """Tests for normalize_service() and content types."""

    @pytest.mark.parametrize("service,expected", [
        ("upload-pack", "upload-pack"),
        ("git-upload-pack", "upload-pack"),
        ("receive-pack", "receive-pack"),
        ("git-receive-pack", "receive-pack"),
    ])
    def test_valid_services(self, service, expected):
        assert smart_http.normalize_service(service) == expected

    @pytest.mark.parametrize("service", ["", "git-upload-archive", "upload", "git-", "shell"])
    def test_invalid_services(self, service):
        with pytest.raises(InvalidServiceError):
            smart_http.normalize_service(service)

    def test_content_types(self):
        assert smart_http.advertisement_content_type("git-upload-pack") == (
            "application/x-git-upload-pack-advertisement"
        )
        assert smart_http.result_content_type("receive-pack") == "application/x-git-receive-pack-result"

    async def test_invalid_service_never_spawns(self, tmp_path):
        with pytest.raises(InvalidServiceError):
            await smart_http.service_rpc(tmp_path, "upload-archive", b"", git_binary="/nonexistent/git")


# -----------------------------------------------------------------------------
# Process Plumbing Tests
# -----------------------------------------------------------------------------

@requires_posix
class TestGitProcess:
    """Tests for GitProcess using stand-in executables."""

    async def test_spawn_failure_raises_gateway_error(self, tmp_path):
        with pytest.raises(GatewayError):
            await smart_http.upload_pack(tmp_path, b"", git_binary=str(tmp_path / "missing-git"))

    async def test_large_input_does_not_deadlock(self, tmp_path, fake_git):
        """Input bigger than a pipe buffer round-trips through the child."""
        payload = b"0123456789abcdef" * 128 * 1024  # 2 MiB
        process = await smart_http.upload_pack(tmp_path, payload, git_binary=fake_git("exec cat"))
        output = await asyncio.wait_for(_collect(process), timeout=30)
        assert output == payload
        assert process.result.returncode == 0
        assert process.result.bytes_out == len(payload)

    async def test_empty_body_still_spawns(self, tmp_path, fake_git):
        process = await smart_http.upload_pack(tmp_path, b"", git_binary=fake_git("cat; echo done"))
        assert await _collect(process) == b"done\n"
        assert process.result.returncode == 0

    async def test_nonzero_exit_is_recorded_not_raised(self, tmp_path, fake_git):
        process = await smart_http.receive_pack(
            tmp_path, b"", git_binary=fake_git("printf partial; echo oops >&2; exit 3")
        )
        assert await _collect(process) == b"partial"
        assert process.result.returncode == 3
        assert process.result.stderr == b"oops\n"
        assert not process.result.ok

    async def test_git_protocol_forwarded(self, tmp_path, fake_git):
        process = await smart_http.upload_pack(
            tmp_path, b"", git_binary=fake_git('printf "%s" "$GIT_PROTOCOL"'), git_protocol="version=2"
        )
        assert await _collect(process) == b"version=2"

    async def test_arguments(self, tmp_path, fake_git):
        """The child gets: <service> --stateless-rpc <path>."""
        process = await smart_http.upload_pack(tmp_path, b"", git_binary=fake_git('printf "%s|" "$@"'))
        assert await _collect(process) == f"upload-pack|--stateless-rpc|{tmp_path}|".encode()

    async def test_advertisement_prefix(self, tmp_path, fake_git):
        process = await smart_http.advertise_refs(tmp_path, "git-upload-pack", git_binary=fake_git("printf refs"))
        output = await _collect(process)
        assert output == smart_http.service_header("upload-pack") + b"refs"
        assert process.content_type == "application/x-git-upload-pack-advertisement"

    async def test_run_into_sink(self, tmp_path, fake_git):
        received = []

        async def sink(chunk: bytes) -> None:
            received.append(chunk)

        process = await smart_http.upload_pack(tmp_path, b"abc", git_binary=fake_git("exec cat"))
        result = await process.run(sink)
        assert b"".join(received) == b"abc"
        assert result.ok

    async def test_failing_sink_is_recorded(self, tmp_path, fake_git):
        """A sink error stops the pump and kills the child without raising."""
        async def sink(chunk: bytes) -> None:
            raise ConnectionResetError("client went away")

        process = await smart_http.upload_pack(
            tmp_path, b"", git_binary=fake_git("echo first; exec sleep 30")
        )
        result = await asyncio.wait_for(process.run(sink), timeout=10)
        assert isinstance(result.sink_error, ConnectionResetError)
        assert result.killed
        assert not result.ok

    async def test_cancellation_kills_child(self, tmp_path, fake_git):
        process = await smart_http.upload_pack(tmp_path, b"", git_binary=fake_git("exec sleep 30"))
        task = asyncio.create_task(_collect(process))
        await asyncio.sleep(0.2)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert process.result.killed
        assert process._process.returncode is not None

    async def test_unstarted_stream_closed_kills_child(self, tmp_path, fake_git):
        """Closing a stream that never yielded still takes the child down."""
        process = await smart_http.upload_pack(tmp_path, b"", git_binary=fake_git("exec sleep 30"))
        chunks = process.stream()
        await chunks.aclose()
        await asyncio.wait_for(process.aclose(), timeout=10)
        assert process.result.killed
        assert process._process.returncode is not None

    async def test_aclose_is_idempotent(self, tmp_path, fake_git):
        process = await smart_http.upload_pack(tmp_path, b"", git_binary=fake_git("printf ok"))
        assert await _collect(process) == b"ok"
        await process.aclose()
        await process.aclose()
        assert process.result.returncode == 0
        assert not process.result.killed

    async def test_aclose_before_start_is_noop(self, tmp_path):
        process = smart_http.GitProcess("upload-pack", [str(tmp_path)])
        await process.aclose()
        assert process.result.returncode is None


# -----------------------------------------------------------------------------
# Real git Tests
# -----------------------------------------------------------------------------

@requires_git
class TestWithGit:
    """Tests against the real git binary."""

    async def test_upload_pack_advertisement(self, builder, demo_repo):
        process = await smart_http.advertise_refs(builder.path, "git-upload-pack")
        output = await _collect(process)
        assert output.startswith(b"001e# service=git-upload-pack\n0000")
        assert demo_repo["third"].encode() + b" refs/heads/main" in output
        assert output.endswith(b"0000")
        assert process.result.returncode == 0

    async def test_receive_pack_advertisement(self, builder, demo_repo):
        process = await smart_http.advertise_refs(builder.path, "receive-pack")
        output = await _collect(process)
        assert output.startswith(b"001f# service=git-receive-pack\n0000")
        assert b"report-status" in output

    async def test_upload_pack_sends_pack(self, builder, demo_repo):
        want = smart_http.pkt_line(b"want " + demo_repo["third"].encode() + b"\n")
        body = want + smart_http.FLUSH_PKT + smart_http.pkt_line(b"done\n")
        process = await smart_http.upload_pack(builder.path, body)
        output = await _collect(process)
        assert output.startswith(b"0008NAK\n")
        assert b"PACK" in output
        assert process.result.returncode == 0

    async def test_upload_pack_empty_body(self, builder, demo_repo):
        """An empty request still runs git; its exit status is only recorded."""
        process = await smart_http.upload_pack(builder.path, b"")
        await _collect(process)
        assert process.result.returncode is not None
