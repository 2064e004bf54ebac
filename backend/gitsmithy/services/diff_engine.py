"""
Diff and patch rendering for a single commit against its first parent.

Tree deltas come from dulwich's tree_changes (with rename detection);
hunks are produced with difflib and wrapped in git-style file headers.
"""

import difflib
from dataclasses import dataclass
from email.utils import format_datetime
from enum import Enum

from dulwich.diff_tree import (
    CHANGE_ADD,
    CHANGE_COPY,
    CHANGE_DELETE,
    CHANGE_MODIFY,
    CHANGE_RENAME,
    RenameDetector,
    _similarity_score,
    tree_changes,
)
from dulwich.objects import Blob, S_ISGITLINK
from dulwich.repo import Repo as DulwichRepo

from gitsmithy.services.errors import CommitNotFoundError, NoParentError
from gitsmithy.services.history import summarize
from gitsmithy.services.revisions import get_commit
from gitsmithy.services.tree_walker import is_binary

DEFAULT_CONTEXT_LINES = 3

# Separator between file diffs in the commit view
FILE_SEPARATOR = "\n\n\n\n"

# Placeholder date git format-patch puts on the mbox From line
PATCH_FROM_DATE = "Mon Sep 17 00:00:00 2001"

DIFFSTAT_BAR_WIDTH = 50

NO_NEWLINE_MARKER = "\\ No newline at end of file\n"

_C_ESCAPES = {
    0x07: "\\a",
    0x08: "\\b",
    0x09: "\\t",
    0x0a: "\\n",
    0x0b: "\\v",
    0x0c: "\\f",
    0x0d: "\\r",
    0x22: "\\\"",
    0x5c: "\\\\",
}


class ChangeKind(str, Enum):
    ADD = "add"
    DELETE = "delete"
    MODIFY = "modify"
    RENAME = "rename"


_KIND_BY_TYPE = {
    CHANGE_ADD: ChangeKind.ADD,
    CHANGE_COPY: ChangeKind.ADD,
    CHANGE_DELETE: ChangeKind.DELETE,
    CHANGE_MODIFY: ChangeKind.MODIFY,
    CHANGE_RENAME: ChangeKind.RENAME,
}


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    old_path: str | None
    new_path: str | None
    old_id: str | None
    new_id: str | None
    old_mode: int | None
    new_mode: int | None

    @property
    def path(self) -> str:
        return self.new_path if self.new_path is not None else self.old_path


@dataclass(frozen=True)
class FileDiff:
    change: Change
    text: str
    insertions: int
    deletions: int
    binary: bool
    old_size: int
    new_size: int


@dataclass(frozen=True)
class DiffStat:
    files: list[FileDiff]

    @property
    def insertions(self) -> int:
        return sum(f.insertions for f in self.files)

    @property
    def deletions(self) -> int:
        return sum(f.deletions for f in self.files)

    def format(self) -> str:
        """Render in the shape of `git diff --stat`."""
        if not self.files:
            return " 0 files changed\n"

        names = [_stat_name(f.change) for f in self.files]
        name_width = max(len(name) for name in names)
        totals = [f.insertions + f.deletions for f in self.files if not f.binary]
        max_total = max(totals, default=0)
        count_width = len(str(max_total))

        lines = []
        for name, f in zip(names, self.files):
            if f.binary:
                detail = f"Bin {f.old_size} -> {f.new_size} bytes"
            else:
                total = f.insertions + f.deletions
                detail = f"{total:>{count_width}} {_bar(f.insertions, f.deletions, max_total)}".rstrip()
            lines.append(f" {name:<{name_width}} | {detail}\n")
        lines.append(_summary_line(len(self.files), self.insertions, self.deletions))
        return "".join(lines)


def _needs_quoting(raw: bytes) -> bool:
    return any(b < 0x20 or b >= 0x7f or b in _C_ESCAPES for b in raw)


def quote_path(path: str) -> str:
    """
    Quote a path the way git does with core.quotePath enabled.

    Paths holding control characters, double quotes, backslashes or any
    non-ASCII byte are wrapped in double quotes, using C escapes where one
    exists and three-digit octal for the rest. Spaces are left alone.
    """
    raw = path.encode("utf-8")
    if not _needs_quoting(raw):
        return path
    out = []
    for b in raw:
        if b in _C_ESCAPES:
            out.append(_C_ESCAPES[b])
        elif b < 0x20 or b >= 0x7f:
            out.append(f"\\{b:03o}")
        else:
            out.append(chr(b))
    return '"' + "".join(out) + '"'


def _rename_name(old: str, new: str) -> str:
    """'old => new' with the shared directory prefix and suffix pulled out."""
    if _needs_quoting(old.encode("utf-8")) or _needs_quoting(new.encode("utf-8")):
        return f"{quote_path(old)} => {quote_path(new)}"

    # Common prefix, cut back to the last shared slash
    prefix = 0
    for i, (a, b) in enumerate(zip(old, new)):
        if a != b:
            break
        if a == "/":
            prefix = i + 1

    # Common suffix, starting at a slash and not overlapping the prefix
    suffix = 0
    floor = prefix - 1 if prefix else 0
    i, j = len(old), len(new)
    while i >= floor and j >= floor and (old[i:i + 1] == new[j:j + 1]):
        if old[i:i + 1] == "/":
            suffix = len(old) - i
        i -= 1
        j -= 1

    old_mid = old[prefix:max(prefix, len(old) - suffix)]
    new_mid = new[prefix:max(prefix, len(new) - suffix)]
    if not prefix and not suffix:
        return f"{old_mid} => {new_mid}"
    return f"{old[:prefix]}{{{old_mid} => {new_mid}}}{old[len(old) - suffix:]}"


def _stat_name(change: Change) -> str:
    if change.kind is ChangeKind.RENAME:
        return _rename_name(change.old_path, change.new_path)
    return quote_path(change.path)


def _scale(count: int, max_total: int) -> int:
    if count == 0:
        return 0
    return max(1, count * DIFFSTAT_BAR_WIDTH // max_total)


def _bar(insertions: int, deletions: int, max_total: int) -> str:
    if max_total > DIFFSTAT_BAR_WIDTH:
        insertions = _scale(insertions, max_total)
        deletions = _scale(deletions, max_total)
    return "+" * insertions + "-" * deletions


def _plural(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def _summary_line(files: int, insertions: int, deletions: int) -> str:
    parts = [_plural(files, "file changed", "files changed")]
    if insertions or not deletions:
        parts.append(_plural(insertions, "insertion(+)", "insertions(+)"))
    if deletions or not insertions:
        parts.append(_plural(deletions, "deletion(-)", "deletions(-)"))
    return " " + ", ".join(parts) + "\n"


def _side(entry) -> tuple[str | None, int | None, str | None]:
    # dulwich uses either None or a TreeEntry of Nones for a missing side
    if entry is None or entry.path is None:
        return None, None, None
    return (
        entry.path.decode("utf-8", errors="replace"),
        entry.mode,
        entry.sha.decode("ascii"),
    )


def _tree_delta(repo: DulwichRepo, old_tree: bytes | None, new_tree: bytes) -> list[Change]:
    detector = RenameDetector(repo.object_store)
    changes = []
    for tree_change in tree_changes(repo.object_store, old_tree, new_tree, rename_detector=detector):
        kind = _KIND_BY_TYPE.get(tree_change.type)
        if kind is None:
            continue
        old_path, old_mode, old_id = _side(tree_change.old)
        new_path, new_mode, new_id = _side(tree_change.new)
        if tree_change.type == CHANGE_COPY:
            # A copy reads as a plain add of the new path
            old_path = old_mode = old_id = None
        changes.append(Change(
            kind=kind,
            old_path=old_path,
            new_path=new_path,
            old_id=old_id,
            new_id=new_id,
            old_mode=old_mode,
            new_mode=new_mode,
        ))
    return changes


def _first_parent_tree(repo: DulwichRepo, commit) -> bytes:
    parent_id = commit.parents[0].decode("ascii")
    return get_commit(repo, parent_id).tree


def diff(repo: DulwichRepo, commit_id: str) -> list[Change]:
    """
    Changes between the commit's first parent and the commit.

    Raises NoParentError for a root commit: there is nothing to diff
    against, and that is not the same as an empty diff.
    """
    commit = get_commit(repo, commit_id)
    if not commit.parents:
        raise NoParentError(commit_id)
    try:
        parent_tree = _first_parent_tree(repo, commit)
    except CommitNotFoundError:
        # Shallow repositories may not have the parent object
        raise NoParentError(commit_id) from None
    return _tree_delta(repo, parent_tree, commit.tree)


def commit_changes(repo: DulwichRepo, commit_id: str) -> list[Change]:
    """Like diff(), but a root commit is compared with the empty tree."""
    try:
        return diff(repo, commit_id)
    except NoParentError:
        commit = get_commit(repo, commit_id)
        return _tree_delta(repo, None, commit.tree)


def _blob_data(repo: DulwichRepo, sha: str | None, mode: int | None) -> bytes:
    if sha is None:
        return b""
    if mode is not None and S_ISGITLINK(mode):
        return f"Subproject commit {sha}\n".encode("ascii")
    obj = repo.object_store[sha.encode("ascii")]
    if not isinstance(obj, Blob):
        return b""
    return obj.data


def _lines(data: bytes) -> list[str]:
    # str.splitlines() would also split on \r, \x0c and friends
    text = data.decode("utf-8", errors="replace")
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _hunks(old_lines: list[str], new_lines: list[str], context_lines: int) -> tuple[str, int, int]:
    """Return (hunk text, insertions, deletions) without the ---/+++ header."""
    out = []
    insertions = deletions = 0
    diff_lines = difflib.unified_diff(old_lines, new_lines, n=context_lines)
    for i, line in enumerate(diff_lines):
        if i < 2:
            # difflib's own ---/+++ lines
            continue
        if line.startswith("+"):
            insertions += 1
        elif line.startswith("-"):
            deletions += 1
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(NO_NEWLINE_MARKER)
    return "".join(out), insertions, deletions


def _mode_str(mode: int | None) -> str:
    return f"{mode:06o}" if mode is not None else ""


def _similarity(repo: DulwichRepo, change: Change) -> int:
    if change.old_id == change.new_id:
        return 100
    old = repo.object_store[change.old_id.encode("ascii")]
    new = repo.object_store[change.new_id.encode("ascii")]
    if not isinstance(old, Blob) or not isinstance(new, Blob):
        return 0
    # Same score the rename detector matched on
    return _similarity_score(old, new)


def file_diff(repo: DulwichRepo, change: Change, context_lines: int = DEFAULT_CONTEXT_LINES) -> FileDiff:
    """Render one change as a git-style file diff."""
    old_name = change.old_path if change.old_path is not None else change.new_path
    new_name = change.new_path if change.new_path is not None else change.old_path
    header = [f"diff --git {quote_path('a/' + old_name)} {quote_path('b/' + new_name)}\n"]

    if change.kind is ChangeKind.ADD:
        header.append(f"new file mode {_mode_str(change.new_mode)}\n")
    elif change.kind is ChangeKind.DELETE:
        header.append(f"deleted file mode {_mode_str(change.old_mode)}\n")
    else:
        if change.old_mode != change.new_mode:
            header.append(f"old mode {_mode_str(change.old_mode)}\n")
            header.append(f"new mode {_mode_str(change.new_mode)}\n")
        if change.kind is ChangeKind.RENAME:
            header.append(f"similarity index {_similarity(repo, change)}%\n")
            header.append(f"rename from {quote_path(change.old_path)}\n")
            header.append(f"rename to {quote_path(change.new_path)}\n")

    if change.old_id != change.new_id:
        index = f"index {(change.old_id or '0' * 40)[:7]}..{(change.new_id or '0' * 40)[:7]}"
        if change.old_mode == change.new_mode:
            index += f" {_mode_str(change.new_mode)}"
        header.append(index + "\n")

    old_data = _blob_data(repo, change.old_id, change.old_mode)
    new_data = _blob_data(repo, change.new_id, change.new_mode)
    binary = is_binary(old_data) or is_binary(new_data)
    from_file = quote_path(f"a/{change.old_path}") if change.old_path is not None else "/dev/null"
    to_file = quote_path(f"b/{change.new_path}") if change.new_path is not None else "/dev/null"

    insertions = deletions = 0
    body = ""
    if change.old_id != change.new_id:
        if binary:
            body = f"Binary files {from_file} and {to_file} differ\n"
        else:
            hunks, insertions, deletions = _hunks(_lines(old_data), _lines(new_data), context_lines)
            if hunks:
                body = f"--- {from_file}\n+++ {to_file}\n{hunks}"

    return FileDiff(
        change=change,
        text="".join(header) + body,
        insertions=insertions,
        deletions=deletions,
        binary=binary,
        old_size=len(old_data),
        new_size=len(new_data),
    )


def render_file_diff(repo: DulwichRepo, change: Change, context_lines: int = DEFAULT_CONTEXT_LINES) -> str:
    return file_diff(repo, change, context_lines).text


def file_diffs(repo: DulwichRepo, changes: list[Change], context_lines: int = DEFAULT_CONTEXT_LINES) -> list[FileDiff]:
    return [file_diff(repo, change, context_lines) for change in changes]


def render_unified(repo: DulwichRepo, changes: list[Change], context_lines: int = DEFAULT_CONTEXT_LINES) -> str:
    """All file diffs joined with a double blank line between them."""
    return FILE_SEPARATOR.join(render_file_diff(repo, change, context_lines) for change in changes)


def diffstat(repo: DulwichRepo, changes: list[Change], context_lines: int = DEFAULT_CONTEXT_LINES) -> DiffStat:
    return DiffStat(files=file_diffs(repo, changes, context_lines))


def render_patch_email(repo: DulwichRepo, commit_id: str, context_lines: int = DEFAULT_CONTEXT_LINES) -> str:
    """
    Render the commit as a single-patch email, like `git format-patch -1`.

    Raises NoParentError for a root commit.
    """
    changes = diff(repo, commit_id)
    summary = summarize(get_commit(repo, commit_id))
    diffs = file_diffs(repo, changes, context_lines)
    stat = DiffStat(files=diffs)

    body = summary.message.split("\n", 1)[1].strip("\r\n") if "\n" in summary.message else ""
    lines = [
        f"From {summary.id} {PATCH_FROM_DATE}\n",
        f"From: {summary.author} <{summary.author_email}>\n",
        f"Date: {format_datetime(summary.author_time)}\n",
        f"Subject: [PATCH] {summary.subject}\n",
        "\n",
    ]
    if body:
        lines.append(body + "\n")
    lines.append("---\n")
    lines.append(stat.format())
    lines.append("\n")
    lines.extend(f.text for f in diffs)
    return "".join(lines)
