# Custom assertion helpers

from .api import (
    assert_error_response,
    assert_git_info_refs_response,
    assert_json_contains,
    assert_json_list_length,
    assert_no_cache,
    assert_not_found,
    assert_status_code,
)

__all__ = [
    # API assertions
    "assert_status_code",
    "assert_json_contains",
    "assert_json_list_length",
    "assert_error_response",
    "assert_not_found",
    # Git protocol assertions
    "assert_git_info_refs_response",
    "assert_no_cache",
]
