"""Core zbxgpu functionality."""

from zbxgpu.core.context import Context
from zbxgpu.core.directives import (
    Directive,
    DirectiveKey,
    MalformedDirectiveError,
    parse_directive,
)
from zbxgpu.core.merger import (
    DirectiveMerger,
    MergePlan,
    MergeReport,
    Outcome,
    commit_append,
    plan_directive,
    plan_merge,
)

__all__ = [
    "Context",
    "Directive",
    "DirectiveKey",
    "DirectiveMerger",
    "MalformedDirectiveError",
    "MergePlan",
    "MergeReport",
    "Outcome",
    "commit_append",
    "parse_directive",
    "plan_directive",
    "plan_merge",
]
