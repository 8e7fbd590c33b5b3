"""Shared test fixtures."""

import subprocess
import sys
from pathlib import Path

import pytest

# Add project root to path for package imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from zbxgpu import payloads  # noqa: E402


class MockContext:
    """Mock Context for testing without real system access."""

    def __init__(
        self,
        tools_available: list[str] | None = None,
        command_outputs: dict[tuple, str | Exception | subprocess.CompletedProcess] | None = None,
        file_contents: dict[str, str] | None = None,
        dirs: list[str] | None = None,
        env: dict[str, str] | None = None,
        euid: int = 0,
    ):
        self.tools_available = set(tools_available or [])
        self.command_outputs = command_outputs or {}
        self.file_contents = dict(file_contents or {})
        self.dirs = set(dirs or [])
        self.env = env or {}
        self.euid = euid
        self.modes: dict[str, int] = {}
        self.commands_run: list[list[str]] = []

    def check_tool(self, name: str) -> bool:
        """Check if tool is in mocked available list."""
        return name in self.tools_available

    def run(
        self,
        cmd: list[str],
        check: bool = False,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """Return mocked command output."""
        self.commands_run.append(cmd)
        key = tuple(cmd)
        if key not in self.command_outputs:
            raise KeyError(f"No mock output for command: {cmd}")

        output = self.command_outputs[key]
        if isinstance(output, Exception):
            raise output

        # Allow passing CompletedProcess directly for more control (e.g., non-zero returncode)
        if isinstance(output, subprocess.CompletedProcess):
            if check and output.returncode != 0:
                raise subprocess.CalledProcessError(output.returncode, cmd)
            return output

        return subprocess.CompletedProcess(
            cmd,
            returncode=0,
            stdout=output,
            stderr="",
        )

    def read_file(self, path: str) -> str:
        """Return mocked file content."""
        if path not in self.file_contents:
            raise FileNotFoundError(f"No mock content for: {path}")
        return self.file_contents[path]

    def file_exists(self, path: str) -> bool:
        """Check if path is in mocked files or directories."""
        return path in self.file_contents or path in self.dirs

    def is_dir(self, path: str) -> bool:
        """Check if path is a mocked directory."""
        return path in self.dirs

    def make_dirs(self, path: str, mode: int = 0o755) -> None:
        """Record a created directory."""
        self.dirs.add(path)

    def create_file(self, path: str, mode: int = 0o644) -> None:
        """Create an empty mocked file."""
        if path in self.file_contents:
            raise FileExistsError(path)
        self.file_contents[path] = ""
        self.modes[path] = mode

    def append_file(self, path: str, text: str) -> None:
        """Append to a mocked file."""
        if path not in self.file_contents:
            raise FileNotFoundError(path)
        self.file_contents[path] += text

    def write_file(self, path: str, text: str) -> None:
        """Replace mocked file content."""
        self.file_contents[path] = text

    def copy_file(self, src: str, dst: str) -> None:
        """Copy mocked file content."""
        self.file_contents[dst] = self.read_file(src)

    def chmod(self, path: str, mode: int) -> None:
        """Record a permission change."""
        if path not in self.file_contents:
            raise FileNotFoundError(path)
        self.modes[path] = mode

    def remove_file(self, path: str) -> None:
        """Remove a mocked file."""
        if path not in self.file_contents:
            raise FileNotFoundError(path)
        del self.file_contents[path]

    def remove_tree(self, path: str) -> None:
        """Remove a mocked directory."""
        self.dirs.discard(path)

    def get_env(self, key: str, default: str | None = None) -> str | None:
        """Return mocked environment variable."""
        return self.env.get(key, default)

    def get_euid(self) -> int:
        """Return mocked effective uid."""
        return self.euid


@pytest.fixture
def mock_context():
    """Factory fixture for creating MockContext instances."""
    def _create(**kwargs) -> MockContext:
        return MockContext(**kwargs)
    return _create


def bundled_files() -> dict[str, str]:
    """Real contents of the files shipped in zbxgpu/raw, keyed by path."""
    return {
        str(payloads.bundled_path(name)): payloads.bundled_path(name).read_text()
        for name in (payloads.GET_GPUS_INFO, payloads.USERPARAM_BASE)
    }


def completed(cmd: list[str], returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    """Build a CompletedProcess for command_outputs."""
    return subprocess.CompletedProcess(cmd, returncode=returncode, stdout=stdout, stderr=stderr)


UNIT_FILES_AGENT2 = """\
UNIT FILE                          STATE           VENDOR PRESET
ssh.service                        enabled         enabled
zabbix-agent2.service              enabled         enabled

3 unit files listed.
"""

UNIT_FILES_AGENTD = """\
UNIT FILE                          STATE           VENDOR PRESET
zabbix-agent.service               enabled         enabled
"""

UNIT_FILES_NONE = """\
UNIT FILE                          STATE           VENDOR PRESET
ssh.service                        enabled         enabled
"""
