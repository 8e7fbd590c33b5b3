"""Idempotent UserParameter merging into agent configuration files.

Existing lines are never rewritten or reordered; missing directives are
appended at the end of the file. Every call re-reads the file and no lock
is taken, so concurrent runs against one file must be serialized by the
caller.
"""

import errno
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from zbxgpu.core.directives import (
    DIRECTIVE_PREFIX,
    DirectiveKey,
    MalformedDirectiveError,
    parse_directive,
)

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


DEFAULT_FILE_MODE = 0o644


class Outcome(str, Enum):
    """Result of ensuring a single directive."""

    PRESENT = "present"
    APPENDED = "appended"


@dataclass
class MergeReport:
    """Keys merged into / already present in a target file, in base order."""

    merged_keys: list[str] = field(default_factory=list)
    skipped_keys: list[str] = field(default_factory=list)
    malformed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.merged_keys)

    def to_dict(self) -> dict:
        return {
            "merged_keys": self.merged_keys,
            "skipped_keys": self.skipped_keys,
            "malformed": self.malformed,
        }


@dataclass
class MergePlan:
    """Text to append to a target plus the report describing it."""

    append_text: str
    report: MergeReport


def _split_lines(contents: str) -> list[str]:
    if not contents:
        return []
    lines = contents.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line.rstrip("\r") for line in lines]


def _complete_lines(contents: str) -> list[str]:
    """Terminated lines only; an unterminated last line may be a cut-off append."""
    lines = _split_lines(contents)
    if contents and not contents.endswith("\n"):
        lines.pop()
    return lines


def _existing_keys(contents: str) -> set[str]:
    """Keys defined in contents; a key cannot hold a comma so set lookup equals ^key, matching."""
    keys = set()
    for line in _complete_lines(contents):
        if not line.startswith(DIRECTIVE_PREFIX):
            continue
        key, sep, _ = line.partition(",")
        if sep:
            keys.add(key)
    return keys


def _terminated(contents: str, text: str) -> str:
    # A missing final newline (e.g. crash mid-append) must not glue the
    # next directive onto the partial line.
    if contents and not contents.endswith("\n"):
        return "\n" + text
    return text


def plan_directive(contents: str, key: DirectiveKey | str, full_line: str) -> str | None:
    """
    Compute what ensuring one directive would append.

    Args:
        contents: Current target file contents
        key: Directive key (full ``UserParameter=name`` or bare item key)
        full_line: Line to append when the key is missing

    Returns:
        Text to append, or None if the key is already present

    Raises:
        ValueError: If full_line does not define key or spans several lines
    """
    key = DirectiveKey.coerce(key)
    full_line = full_line.rstrip("\r\n")
    if "\n" in full_line:
        raise ValueError(f"Directive must be a single line: {full_line!r}")
    if not key.matches(full_line):
        raise ValueError(f"Line does not define {key}: {full_line!r}")

    for line in _complete_lines(contents):
        if key.matches(line):
            return None

    return _terminated(contents, full_line + "\n")


def plan_merge(base_contents: str, target_contents: str) -> MergePlan:
    """
    Compute the directives a base template would add to a target.

    Only directive lines of the base are considered, in base order.
    Comments and blanks are never copied. Malformed base lines are
    recorded and skipped.
    """
    report = MergeReport()
    present = _existing_keys(target_contents)
    to_append: list[str] = []

    for line in _split_lines(base_contents):
        try:
            directive = parse_directive(line)
        except MalformedDirectiveError:
            report.malformed.append(line)
            continue
        if directive is None:
            continue

        key = directive.key.value
        if key in present:
            if key not in report.skipped_keys and key not in report.merged_keys:
                report.skipped_keys.append(key)
            continue

        present.add(key)
        report.merged_keys.append(key)
        to_append.append(directive.raw_line)

    append_text = ""
    if to_append:
        append_text = _terminated(target_contents, "\n".join(to_append) + "\n")

    return MergePlan(append_text=append_text, report=report)


def commit_append(path: str, text: str, context: "Context | None" = None) -> None:
    """Append planned text to path. Empty text is a no-op."""
    if not text:
        return
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    context.append_file(path, text)


def _require_file(path: str, context: "Context") -> None:
    if not context.file_exists(path):
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)


class DirectiveMerger:
    """
    Ensures configuration files carry every required directive.

    All filesystem effects go through the context.
    """

    def __init__(self, context: "Context | None" = None):
        if context is None:
            from zbxgpu.core.context import Context
            context = Context()
        self.context = context

    def ensure_file_exists(
        self,
        path: str,
        header: str | None = None,
        mode: int = DEFAULT_FILE_MODE,
    ) -> bool:
        """
        Create path, and any missing parent directories, if it does not exist.

        Args:
            path: File to create
            header: Optional single-line comment written as the first line
            mode: Permission mode for a newly created file

        Returns:
            True if the file was created, False if it already existed

        Raises:
            ValueError: If header spans several lines
        """
        if header and "\n" in header.rstrip("\r\n"):
            raise ValueError(f"Header must be a single line: {header!r}")

        if self.context.file_exists(path):
            return False

        parent = os.path.dirname(path)
        if parent and not self.context.is_dir(parent):
            self.context.make_dirs(parent)

        try:
            self.context.create_file(path, mode)
        except FileExistsError:
            return False

        if header:
            if not header.startswith("#"):
                header = f"# {header}"
            self.context.append_file(path, header.rstrip("\r\n") + "\n")

        return True

    def ensure_directive_present(
        self,
        path: str,
        key: DirectiveKey | str,
        full_line: str,
    ) -> Outcome:
        """
        Append full_line to path unless a line already defines key.

        Raises:
            FileNotFoundError: If path does not exist
        """
        _require_file(path, self.context)
        text = plan_directive(self.context.read_file(path), key, full_line)
        if text is None:
            return Outcome.PRESENT

        commit_append(path, text, self.context)
        return Outcome.APPENDED

    def merge_all_directives(self, base_path: str, target_path: str) -> MergeReport:
        """
        Append every base directive whose key is missing from the target.

        Args:
            base_path: Already materialized base template
            target_path: Configuration file to extend

        Returns:
            MergeReport of merged, skipped and malformed base lines

        Raises:
            FileNotFoundError: If either file does not exist
        """
        _require_file(base_path, self.context)
        _require_file(target_path, self.context)

        plan = plan_merge(
            self.context.read_file(base_path),
            self.context.read_file(target_path),
        )
        commit_append(target_path, plan.append_text, self.context)
        return plan.report
