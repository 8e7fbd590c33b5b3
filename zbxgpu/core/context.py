"""Execution context for testability."""

import os
import shutil
import subprocess
from pathlib import Path


class Context:
    """
    Wraps external calls for testability.

    In production: touches the real filesystem and runs real commands
    In tests: can be replaced with MockContext
    """

    def check_tool(self, name: str) -> bool:
        """Check if a tool exists in PATH."""
        return shutil.which(name) is not None

    def run(
        self,
        cmd: list[str],
        check: bool = False,
        timeout: int | None = 60,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """
        Run a command and return result.

        Args:
            cmd: Command and arguments as list
            check: Raise on non-zero exit code
            timeout: Timeout in seconds
            **kwargs: Additional subprocess.run arguments

        Returns:
            CompletedProcess with stdout, stderr, returncode
        """
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=check,
            timeout=timeout,
            **kwargs,
        )

    def read_file(self, path: str) -> str:
        """Read file contents."""
        return Path(path).read_text()

    def file_exists(self, path: str) -> bool:
        """Check if file exists."""
        return Path(path).exists()

    def is_dir(self, path: str) -> bool:
        """Check if path is a directory."""
        return Path(path).is_dir()

    def make_dirs(self, path: str, mode: int = 0o755) -> None:
        """Create a directory and any missing parents."""
        Path(path).mkdir(mode=mode, parents=True, exist_ok=True)

    def create_file(self, path: str, mode: int = 0o644) -> None:
        """
        Create an empty file, failing if it already exists.

        Raises:
            FileExistsError: If path already exists
            FileNotFoundError: If the parent directory is missing
        """
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, mode)
        os.close(fd)
        # O_CREAT honours the umask
        os.chmod(path, mode)

    def append_file(self, path: str, text: str) -> None:
        """
        Append text to an existing file.

        Raises:
            FileNotFoundError: If path does not exist
        """
        with open(path, "r+") as f:
            f.seek(0, os.SEEK_END)
            f.write(text)

    def write_file(self, path: str, text: str) -> None:
        """Write file contents, replacing anything already there."""
        Path(path).write_text(text)

    def copy_file(self, src: str, dst: str) -> None:
        """Copy file contents."""
        shutil.copyfile(src, dst)

    def chmod(self, path: str, mode: int) -> None:
        """Change file permissions."""
        os.chmod(path, mode)

    def remove_file(self, path: str) -> None:
        """Remove a file."""
        Path(path).unlink()

    def remove_tree(self, path: str) -> None:
        """Remove a directory tree."""
        shutil.rmtree(path)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Get environment variable."""
        return os.environ.get(key, default)

    def get_euid(self) -> int:
        """Get effective user id."""
        return os.geteuid()
