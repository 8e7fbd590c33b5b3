"""Structured output helper for installer runs."""

import json
from typing import Any


class Output:
    """Collects steps, warnings and data produced by a recipe."""

    def __init__(self):
        self.data: dict[str, Any] = {}
        self.steps: list[dict[str, str]] = []
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self._summary: str | None = None

    def emit(self, data: dict[str, Any]) -> None:
        """Store structured output data."""
        self.data.update(data)

    def step(self, action: str, target: str, detail: str | None = None) -> None:
        """Record a filesystem or service action."""
        entry = {"action": action, "target": target}
        if detail:
            entry["detail"] = detail
        self.steps.append(entry)

    def error(self, message: str) -> None:
        """Record an error message."""
        self.errors.append(message)

    def warning(self, message: str) -> None:
        """Record a warning message."""
        self.warnings.append(message)

    def set_summary(self, summary: str) -> None:
        """Set a one-line summary."""
        self._summary = summary

    @property
    def summary(self) -> str:
        """Get summary or generate from data."""
        if self._summary:
            return self._summary
        if self.errors:
            return f"Error: {self.errors[0]}"
        if self.warnings:
            return f"Warning: {self.warnings[0]}"
        return "ok"

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "steps": self.steps,
            "warnings": self.warnings,
            "errors": self.errors,
            **self.data,
        }

    def to_json(self) -> str:
        """Return everything as a JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def to_plain(self) -> str:
        """Return everything as plain text."""
        lines = []
        for step in self.steps:
            line = f"[{step['action']}] {step['target']}"
            if "detail" in step:
                line += f" ({step['detail']})"
            lines.append(line)

        for key, value in self.data.items():
            self._render_value(lines, key, value)

        for warning in self.warnings:
            lines.append(f"[WARNING] {warning}")
        for error in self.errors:
            lines.append(f"[ERROR] {error}")

        lines.append(self.summary)
        return "\n".join(lines)

    def render(self, format: str = "plain") -> None:
        """Print output in the specified format."""
        if format == "json":
            print(self.to_json())
        else:
            print(self.to_plain())

    def _render_value(self, lines: list, key: str, value: Any, indent: int = 0) -> None:
        """Recursively render a value with proper formatting."""
        prefix = "  " * indent
        display_key = str(key).replace("_", " ").title()

        if isinstance(value, dict):
            lines.append(f"{prefix}{display_key}:")
            for k, v in value.items():
                self._render_value(lines, k, v, indent + 1)
        elif isinstance(value, list):
            if not value:
                lines.append(f"{prefix}{display_key}: (none)")
            else:
                lines.append(f"{prefix}{display_key}:")
                for item in value:
                    lines.append(f"{prefix}  - {item}")
        elif isinstance(value, bool):
            lines.append(f"{prefix}{display_key}: {'yes' if value else 'no'}")
        elif isinstance(value, str) and "\n" in value:
            lines.append(f"{prefix}{display_key}:")
            for sub in value.splitlines():
                lines.append(f"{prefix}  {sub}")
        else:
            lines.append(f"{prefix}{display_key}: {value}")
