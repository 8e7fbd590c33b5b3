"""Running systemctl, agent binaries and other external tools."""

import subprocess
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


class CommandError(Exception):
    """An external tool could not be run or exited non-zero."""

    def __init__(self, message: str, cmd: list[str], returncode: int | None = None):
        super().__init__(message)
        self.cmd = cmd
        self.returncode = returncode


def run_command(
    cmd: list[str],
    context: "Context | None" = None,
    check: bool = False,
) -> str:
    """
    Run an external tool and return its stdout.

    Args:
        cmd: Command and arguments, e.g. ``["systemctl", "restart", "zabbix-agent2"]``
        context: Execution context (for testing)
        check: Treat a non-zero exit as a failure

    Returns:
        Command stdout

    Raises:
        CommandError: If the tool cannot be started, or check=True and it
            exits non-zero (message carries the exit code and stderr)
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    shown = " ".join(cmd)
    try:
        result = context.run(cmd)
    except (OSError, subprocess.SubprocessError) as e:
        raise CommandError(f"Cannot run {shown}: {e}", cmd) from e

    if check and result.returncode != 0:
        detail = (result.stderr or "").strip()
        message = f"{shown} failed (exit {result.returncode})"
        if detail:
            message = f"{message}: {detail}"
        raise CommandError(message, cmd, result.returncode)

    return result.stdout


def check_tool(
    name: str,
    context: "Context | None" = None,
    required: bool = False,
) -> bool:
    """
    Report whether a tool such as nvidia-smi or curl is on PATH.

    Raises:
        CommandError: If required=True and the tool is missing
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if context.check_tool(name):
        return True
    if required:
        raise CommandError(f"{name} not found in PATH", [name])
    return False
