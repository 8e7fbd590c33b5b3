"""Tests for installer recipes."""

import io
import os
import subprocess

import pytest

from tests.conftest import UNIT_FILES_AGENT2, bundled_files, completed
from zbxgpu import payloads
from zbxgpu.core.config import Settings
from zbxgpu.core.logging import InstallLogger
from zbxgpu.core.output import Output
from zbxgpu.installer import (
    InstallError,
    Installer,
    install_err_check,
    install_nvlink,
    install_upstream,
    install_vendored,
)

LIST_UNITS = ("systemctl", "list-unit-files")
RESTART_AGENT2 = ("systemctl", "restart", "zabbix-agent2")
AGENT2_DIR = "/etc/zabbix/zabbix_agent2.d"
USERPARAM = f"{AGENT2_DIR}/userparameter_nvidia-smi.conf"
REQUIRED_KEYS = (
    "UserParameter=gpu.unknown_error,",
    "UserParameter=nvidia.gpu.error,",
    "UserParameter=gpu.nvlink.status,",
)


def make_installer(ctx, restart=True, **settings) -> Installer:
    settings.setdefault("clone_upstream", False)
    logger = InstallLogger("test", quiet=True, stream=io.StringIO(), persist=False)
    return Installer(ctx, Settings(**settings), logger, Output(), restart=restart)


def directive_lines(text: str) -> list[str]:
    return [line for line in text.splitlines() if line.startswith("UserParameter=")]


@pytest.fixture
def vendored_context(mock_context):
    def _create(files=None, **kwargs):
        contents = bundled_files()
        contents.update(files or {})
        kwargs.setdefault("dirs", [AGENT2_DIR])
        kwargs.setdefault("command_outputs", {LIST_UNITS: UNIT_FILES_AGENT2, RESTART_AGENT2: ""})
        return mock_context(file_contents=contents, **kwargs)
    return _create


class TestInstallVendored:
    """Tests for the vendored recipe."""

    def test_requires_root(self, vendored_context):
        """Non-root runs are rejected."""
        installer = make_installer(vendored_context(euid=1000))

        with pytest.raises(InstallError, match="root"):
            install_vendored(installer)

    def test_fresh_install_seeds_from_base(self, vendored_context):
        """Missing userparameter file is seeded and completed."""
        ctx = vendored_context()
        installer = make_installer(ctx)

        install_vendored(installer)

        base = bundled_files()[str(payloads.bundled_path(payloads.USERPARAM_BASE))]
        conf = ctx.file_contents[USERPARAM]
        assert conf.startswith(base)
        for prefix in REQUIRED_KEYS:
            assert sum(line.startswith(prefix) for line in conf.splitlines()) == 1
        assert ctx.modes[USERPARAM] == 0o644
        assert ctx.file_contents["/etc/zabbix/scripts/get_gpus_info.sh"].startswith("#!/bin/bash")
        assert ctx.file_contents["/usr/local/bin/check_gpu_err_simple.sh"] == payloads.ERR_CHECK_XID
        assert list(RESTART_AGENT2) in ctx.commands_run
        assert installer.output.data["restarted"] == "zabbix-agent2"

    def test_existing_file_is_merged_not_replaced(self, vendored_context):
        """Custom commands survive; only missing keys are added."""
        existing = (
            "# site overrides\n"
            "UserParameter=gpu.temp[*],/opt/custom-temp $1\n"
            "UserParameter=nvidia.gpu.error,/opt/custom-err\n"
        )
        ctx = vendored_context(files={USERPARAM: existing})
        installer = make_installer(ctx)

        install_vendored(installer)

        conf = ctx.file_contents[USERPARAM]
        assert conf.startswith(existing)
        lines = directive_lines(conf)
        assert [line for line in lines if line.startswith("UserParameter=gpu.temp[*],")] == [
            "UserParameter=gpu.temp[*],/opt/custom-temp $1"
        ]
        assert [line for line in lines if line.startswith("UserParameter=nvidia.gpu.error,")] == [
            "UserParameter=nvidia.gpu.error,/opt/custom-err"
        ]
        assert "# NVIDIA GPU UserParameters" not in conf
        merge = installer.output.data["merge"]
        assert "UserParameter=gpu.temp[*]" in merge["skipped_keys"]
        assert "UserParameter=gpu.power[*]" in merge["merged_keys"]

    def test_rerun_is_idempotent(self, vendored_context):
        """A second run changes no file."""
        ctx = vendored_context()

        install_vendored(make_installer(ctx))
        snapshot = dict(ctx.file_contents)
        install_vendored(make_installer(ctx))

        assert ctx.file_contents == snapshot

    def test_keeps_existing_helper_scripts(self, vendored_context):
        """Helpers already on disk are not overwritten."""
        ctx = vendored_context(files={
            "/etc/zabbix/scripts/get_gpus_info.sh": "custom discovery\n",
            "/usr/local/bin/check_gpu_err_simple.sh": "custom check\n",
        })

        install_vendored(make_installer(ctx))

        assert ctx.file_contents["/etc/zabbix/scripts/get_gpus_info.sh"] == "custom discovery\n"
        assert ctx.file_contents["/usr/local/bin/check_gpu_err_simple.sh"] == "custom check\n"

    def test_warns_when_include_unconfirmed(self, vendored_context):
        """Missing Include in the main config is a warning."""
        ctx = vendored_context()
        installer = make_installer(ctx)

        install_vendored(installer)

        assert any("Could not confirm agent Include" in w for w in installer.output.warnings)

    def test_clone_failure_does_not_break_install(self, vendored_context):
        """Missing git only warns."""
        ctx = vendored_context()
        installer = make_installer(ctx, clone_upstream=True)

        install_vendored(installer)

        assert any("git not found" in w for w in installer.output.warnings)
        assert USERPARAM in ctx.file_contents

    def test_no_restart(self, vendored_context):
        """restart=False leaves the service alone."""
        ctx = vendored_context()

        install_vendored(make_installer(ctx, restart=False))

        assert list(RESTART_AGENT2) not in ctx.commands_run

    def test_agent_not_detected_warns(self, vendored_context):
        """Unknown service name is a warning, not a failure."""
        ctx = vendored_context(command_outputs={LIST_UNITS: ""})
        installer = make_installer(ctx)

        install_vendored(installer)

        assert any("restart agent manually" in w for w in installer.output.warnings)

    def test_agentd_layout(self, vendored_context):
        """Without agent2.d the classic directory is used and created."""
        ctx = vendored_context(dirs=[])

        install_vendored(make_installer(ctx))

        assert "/etc/zabbix/zabbix_agentd.d/userparameter_nvidia-smi.conf" in ctx.file_contents
        assert ctx.is_dir("/etc/zabbix/zabbix_agentd.d")


class TestInstallUpstream:
    """Tests for the upstream recipe."""

    RAW = "https://raw.example.invalid/master"

    def _context(self, mock_context, **overrides):
        staged = f"/tmp/zbxgpu.{os.getpid()}.userparameter_nvidia-smi.conf.linux"
        script = "/etc/zabbix/scripts/get_gpus_info.sh"
        files = {
            # Downloads are simulated by pre-populating the destinations
            script: "#!/bin/bash\n",
            staged: "UserParameter=gpu.number,/usr/bin/nvidia-smi -L | /usr/bin/wc -l\n",
            "/etc/zabbix/zabbix_agent2.conf": "Server=10.0.0.1\n",
        }
        files.update(overrides.pop("files", {}))
        outputs = {
            LIST_UNITS: UNIT_FILES_AGENT2,
            RESTART_AGENT2: "",
            ("curl", "-fsSL", f"{self.RAW}/get_gpus_info.sh", "-o", script): "",
            ("curl", "-fsSL", f"{self.RAW}/userparameter_nvidia-smi.conf.linux", "-o", staged): "",
        }
        outputs.update(overrides.pop("command_outputs", {}))
        ctx = mock_context(
            tools_available=["curl", "nvidia-smi"],
            command_outputs=outputs,
            file_contents=files,
            **overrides,
        )
        return ctx, staged

    def test_installs_and_includes(self, mock_context):
        """Downloads, seeds the conf, adds Include and restarts."""
        ctx, staged = self._context(mock_context)
        installer = make_installer(ctx, upstream_raw_url=self.RAW, tmpdir="/tmp")

        install_upstream(installer)

        assert staged not in ctx.file_contents
        assert directive_lines(ctx.file_contents[USERPARAM]) == [
            "UserParameter=gpu.number,/usr/bin/nvidia-smi -L | /usr/bin/wc -l"
        ]
        assert ctx.file_contents["/etc/zabbix/zabbix_agent2.conf"].endswith(
            "\nInclude=/etc/zabbix/zabbix_agent2.d/*.conf\n"
        )
        assert ctx.modes["/etc/zabbix/scripts/get_gpus_info.sh"] == 0o755
        assert list(RESTART_AGENT2) in ctx.commands_run
        assert any("self-test" in w for w in installer.output.warnings)

    def test_merges_into_existing_conf(self, mock_context):
        """Existing userparameters are kept."""
        ctx, _ = self._context(mock_context, files={USERPARAM: "UserParameter=gpu.number,custom\n"})

        install_upstream(make_installer(ctx, upstream_raw_url=self.RAW, tmpdir="/tmp"))

        assert ctx.file_contents[USERPARAM] == "UserParameter=gpu.number,custom\n"

    def test_no_agent_fails(self, mock_context):
        """An agent must be installed."""
        ctx, _ = self._context(mock_context, command_outputs={LIST_UNITS: ""})

        with pytest.raises(InstallError, match="Please install Zabbix Agent first"):
            install_upstream(make_installer(ctx, upstream_raw_url=self.RAW, tmpdir="/tmp"))

    def test_fetch_failure_is_fatal(self, mock_context):
        """A failed download aborts the install."""
        script = "/etc/zabbix/scripts/get_gpus_info.sh"
        cmd = ["curl", "-fsSL", f"{self.RAW}/get_gpus_info.sh", "-o", script]
        ctx, _ = self._context(
            mock_context,
            command_outputs={tuple(cmd): completed(cmd, returncode=22)},
        )

        with pytest.raises(InstallError, match="Download failed"):
            install_upstream(make_installer(ctx, upstream_raw_url=self.RAW, tmpdir="/tmp"))
        assert list(RESTART_AGENT2) not in ctx.commands_run

    def test_missing_nvidia_smi_warns(self, mock_context):
        """Missing driver is only a warning."""
        ctx, _ = self._context(mock_context)
        ctx.tools_available.discard("nvidia-smi")
        installer = make_installer(ctx, upstream_raw_url=self.RAW, tmpdir="/tmp")

        install_upstream(installer)

        assert any("nvidia-smi" in w for w in installer.output.warnings)


class TestInstallErrCheck:
    """Tests for the err-check recipe."""

    SCRIPT = "/usr/local/bin/check_gpu_err_simple.sh"
    PROBE = ("systemctl", "is-active", "--quiet", "zabbix-agent2")

    def test_installs_helper_and_key(self, mock_context):
        """Writes the ERR! helper and appends the key once."""
        ctx = mock_context(command_outputs={
            self.PROBE: "",
            RESTART_AGENT2: "",
            (self.SCRIPT,): "0\n",
        })
        installer = make_installer(ctx)

        install_err_check(installer)

        assert ctx.file_contents[self.SCRIPT] == payloads.ERR_CHECK_SMI
        assert ctx.file_contents[USERPARAM] == f"UserParameter=nvidia.gpu.error,{self.SCRIPT}\n"
        assert installer.output.data["test_output"] == "0"
        assert installer.output.data["restarted"] == "zabbix-agent2"

    def test_longer_key_is_not_mistaken(self, mock_context):
        """A key merely containing nvidia.gpu.error does not count."""
        existing = "UserParameter=nvidia.gpu.error.count,/opt/count\n"
        ctx = mock_context(
            file_contents={USERPARAM: existing},
            command_outputs={
                self.PROBE: completed(list(self.PROBE), returncode=3),
                (self.SCRIPT,): PermissionError(13, "Permission denied", self.SCRIPT),
            },
        )
        installer = make_installer(ctx)

        install_err_check(installer)

        assert ctx.file_contents[USERPARAM] == existing + f"UserParameter=nvidia.gpu.error,{self.SCRIPT}\n"
        assert any("not running" in w for w in installer.output.warnings)
        assert any(w.startswith(f"Could not run {self.SCRIPT}") for w in installer.output.warnings)

    def test_refreshes_helper(self, mock_context):
        """The recipe owns its helper and rewrites it; a hung test run only warns."""
        ctx = mock_context(
            file_contents={self.SCRIPT: "stale\n"},
            command_outputs={
                self.PROBE: completed(list(self.PROBE), returncode=3),
                (self.SCRIPT,): subprocess.TimeoutExpired([self.SCRIPT], 60),
            },
        )
        installer = make_installer(ctx)

        install_err_check(installer)

        assert ctx.file_contents[self.SCRIPT] == payloads.ERR_CHECK_SMI
        assert "test_output" not in installer.output.data

    def test_unexpected_test_run_error_propagates(self, mock_context):
        """Only OS and subprocess failures of the test run are tolerated."""
        ctx = mock_context(
            command_outputs={
                self.PROBE: completed(list(self.PROBE), returncode=3),
                (self.SCRIPT,): RuntimeError("boom"),
            },
        )

        with pytest.raises(RuntimeError):
            install_err_check(make_installer(ctx))


class TestInstallNvlink:
    """Tests for the nvlink recipe."""

    CONF = f"{AGENT2_DIR}/gpu_err_check.conf"
    PROBE = ("systemctl", "is-enabled", "zabbix-agent2")

    def test_requires_nvidia_smi(self, mock_context):
        """nvidia-smi must be installed."""
        with pytest.raises(InstallError, match="nvidia-smi not found"):
            install_nvlink(make_installer(mock_context()))

    def test_installs_scripts_and_conf(self, mock_context):
        """Writes both helpers and a headed conf with both keys."""
        ctx = mock_context(
            tools_available=["nvidia-smi"],
            command_outputs={self.PROBE: "enabled\n", RESTART_AGENT2: ""},
        )

        install_nvlink(make_installer(ctx))

        assert ctx.file_contents["/etc/zabbix/scripts/nvlink_inactive_count.sh"] == payloads.NVLINK_INACTIVE
        assert ctx.file_contents["/etc/zabbix/scripts/nvlink_error_sum.sh"] == payloads.NVLINK_ERROR_SUM
        assert ctx.file_contents[self.CONF].splitlines() == [
            "# GPU / NVLink error checks (created by zbxgpu)",
            "UserParameter=gpu.nvlink.inactive.count,/etc/zabbix/scripts/nvlink_inactive_count.sh",
            "UserParameter=gpu.nvlink.error.sum,/etc/zabbix/scripts/nvlink_error_sum.sh",
        ]

    def test_rerun_keeps_conf(self, mock_context):
        """Existing conf lines are never duplicated or replaced."""
        existing = "UserParameter=gpu.nvlink.error.sum,/opt/custom\n"
        ctx = mock_context(
            tools_available=["nvidia-smi"],
            file_contents={self.CONF: existing},
            command_outputs={self.PROBE: completed(list(self.PROBE), returncode=1)},
        )

        install_nvlink(make_installer(ctx))
        install_nvlink(make_installer(ctx))

        assert ctx.file_contents[self.CONF] == (
            existing
            + "UserParameter=gpu.nvlink.inactive.count,/etc/zabbix/scripts/nvlink_inactive_count.sh\n"
        )
