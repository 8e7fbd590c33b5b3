"""Downloading base templates and helper scripts."""

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


CLONE_PREFIX = "zbx-nvidia-smi-multi-gpu"


class FetchError(Exception):
    """Error downloading a file."""

    pass


def fetch(url: str, dst: str, context: "Context | None" = None) -> None:
    """
    Download url to dst with curl, falling back to wget.

    Raises:
        FetchError: If neither tool exists or the download fails
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if context.check_tool("curl"):
        cmd = ["curl", "-fsSL", url, "-o", dst]
    elif context.check_tool("wget"):
        cmd = ["wget", "-qO", dst, url]
    else:
        raise FetchError("Need curl or wget to download files")

    try:
        result = context.run(cmd)
    except Exception as e:
        raise FetchError(f"Download failed: {url}") from e

    if result.returncode != 0:
        detail = (result.stderr or "").strip()
        raise FetchError(f"Download failed: {url} (exit {result.returncode}) {detail}".rstrip())


def clone_upstream(
    url: str,
    tmpdir: str,
    context: "Context | None" = None,
) -> tuple[str | None, str | None]:
    """
    Shallow-clone the upstream template repository, best effort.

    Returns:
        (clone_dir, None) on success, (None, reason) otherwise
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if not context.check_tool("git"):
        return None, "git not found; skip cloning upstream reference"

    clone_dir = f"{tmpdir.rstrip('/')}/{CLONE_PREFIX}.{int(time.time())}"
    try:
        result = context.run(["git", "clone", "--depth", "1", url, clone_dir], timeout=300)
    except Exception as e:
        return None, f"git clone upstream failed: {e}"

    if result.returncode != 0:
        return None, "git clone upstream failed; continuing with vendored files"

    return clone_dir, None


def cleanup_clone(clone_dir: str | None, context: "Context | None" = None) -> bool:
    """Remove a clone directory. Returns True if something was removed."""
    if not clone_dir:
        return False
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    if not context.is_dir(clone_dir):
        return False
    try:
        context.remove_tree(clone_dir)
    except OSError:
        return False
    return True
