"""
Custom assertion helpers for API testing.

These helpers provide cleaner, more expressive assertions for common
patterns in API tests.
"""
from typing import Any

from httpx import Response


def assert_status_code(response: Response, expected: int) -> None:
    """Assert response has expected status code with helpful error message."""
    assert response.status_code == expected, (
        f"Expected status {expected}, got {response.status_code}. "
        f"Response body: {response.text}"
    )


def assert_json_contains(response: Response, expected: dict[str, Any] = None, **kwargs) -> None:
    """Assert response JSON contains all expected key-value pairs.

    This allows for partial matching - the response can contain additional
    fields not specified in expected.

    Can be called as:
        assert_json_contains(response, {"name": "value"})
        assert_json_contains(response, name="value")
    """
    if expected is None:
        expected = kwargs
    else:
        expected = {**expected, **kwargs}

    actual = response.json()
    for key, value in expected.items():
        assert key in actual, f"Expected key '{key}' not found in response: {actual}"
        assert actual[key] == value, (
            f"Expected {key}={value!r}, got {key}={actual[key]!r}"
        )


def assert_json_list_length(response: Response, expected_length: int) -> None:
    """Assert response JSON is a list of expected length."""
    actual = response.json()
    assert isinstance(actual, list), f"Expected list, got {type(actual)}"
    assert len(actual) == expected_length, (
        f"Expected {expected_length} items, got {len(actual)}"
    )


def assert_error_response(response: Response, status_code: int, detail: str) -> None:
    """Assert response is an error with expected status and detail message."""
    assert_status_code(response, status_code)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    assert actual["detail"] == detail, (
        f"Expected detail '{detail}', got '{actual['detail']}'"
    )


def assert_not_found(response: Response) -> None:
    """Assert response is a 404 whose detail says something was not found."""
    assert_status_code(response, 404)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    assert "not found" in actual["detail"].lower(), (
        f"Expected 'not found' in detail, got '{actual['detail']}'"
    )


# -----------------------------------------------------------------------------
# Git Protocol Assertions
# -----------------------------------------------------------------------------

def assert_git_info_refs_response(
    response: Response,
    service: str,
) -> bytes:
    """Assert response is a valid git info/refs response.

    Args:
        response: HTTP response
        service: Expected service (git-upload-pack or git-receive-pack)

    Returns:
        The response content for further inspection
    """
    assert_status_code(response, 200)

    expected_content_type = f"application/x-{service}-advertisement"
    assert response.headers["content-type"] == expected_content_type, (
        f"Expected content-type '{expected_content_type}', "
        f"got '{response.headers['content-type']}'"
    )

    content = response.content
    service_line = f"# service={service}\n".encode()
    header = f"{len(service_line) + 4:04x}".encode() + service_line + b"0000"
    assert content.startswith(header), f"Missing service announcement: {content[:40]!r}"
    assert content.endswith(b"0000"), "Response should end with flush packet"

    return content


def assert_no_cache(response: Response) -> None:
    """Assert git protocol responses are not cacheable."""
    assert response.headers.get("cache-control") == "no-cache"
