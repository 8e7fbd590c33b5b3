"""Filesystem utilities for installer recipes."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


class FileError(Exception):
    """Error accessing a file."""

    pass


def read_file(
    path: str,
    context: "Context | None" = None,
    default: str | None = None,
) -> str:
    """
    Read file contents.

    Args:
        path: Path to file
        context: Execution context (for testing)
        default: Default value if file doesn't exist

    Returns:
        File contents

    Raises:
        FileError: If file doesn't exist and no default provided
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    try:
        return context.read_file(path)
    except FileNotFoundError:
        if default is not None:
            return default
        raise FileError(f"File not found: {path}")


def ensure_dir(
    path: str,
    context: "Context | None" = None,
    mode: int = 0o755,
) -> bool:
    """
    Create a directory if it is missing.

    Returns:
        True if the directory was created
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if context.is_dir(path):
        return False

    try:
        context.make_dirs(path, mode)
    except OSError as e:
        raise FileError(f"Cannot create directory {path}: {e}") from e
    return True


def install_file_if_missing(
    src: str,
    dst: str,
    context: "Context | None" = None,
    mode: int = 0o755,
) -> bool:
    """
    Copy src to dst unless dst already exists. Never overwrites.

    Returns:
        True if the file was installed, False if dst was kept
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if context.file_exists(dst):
        return False

    if not context.file_exists(src):
        raise FileError(f"File not found: {src}")

    context.copy_file(src, dst)
    context.chmod(dst, mode)
    return True


def write_script(
    path: str,
    body: str,
    context: "Context | None" = None,
    mode: int = 0o755,
    overwrite: bool = False,
) -> bool:
    """
    Write a helper script.

    Args:
        path: Destination path
        body: Script contents
        context: Execution context (for testing)
        mode: Permission mode
        overwrite: Replace an existing script

    Returns:
        True if the script was written, False if an existing one was kept
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if context.file_exists(path) and not overwrite:
        return False

    context.write_file(path, body)
    context.chmod(path, mode)
    return True
