"""Shared utility library for installer recipes."""

from zbxgpu.lib.filesystem import (
    FileError,
    ensure_dir,
    install_file_if_missing,
    read_file,
    write_script,
)
from zbxgpu.lib.process import CommandError, check_tool, run_command

__all__ = [
    "CommandError",
    "FileError",
    "check_tool",
    "ensure_dir",
    "install_file_if_missing",
    "read_file",
    "run_command",
    "write_script",
]
