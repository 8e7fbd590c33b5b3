"""Installer recipes placing GPU helpers and UserParameters for the agent.

Every recipe is safe to re-run: helper scripts the recipe does not own
are only created when missing, and userparameter files are only ever
extended with keys they lack.
"""

import os
import subprocess
from typing import TYPE_CHECKING, Callable

from zbxgpu.agent import (
    RestartPolicy,
    agent_flavors,
    agent_status,
    detect_agent,
    detect_userparam_path,
    ensure_include_line,
    include_confirmed,
    restart_agent,
    self_test,
)
from zbxgpu.core.config import Settings
from zbxgpu.core.logging import InstallLogger
from zbxgpu.core.merger import DirectiveMerger, Outcome
from zbxgpu.core.output import Output
from zbxgpu.fetch import FetchError, cleanup_clone, clone_upstream, fetch
from zbxgpu.lib.filesystem import FileError, ensure_dir, install_file_if_missing, write_script
from zbxgpu.lib.process import CommandError, check_tool
from zbxgpu import payloads

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


USERPARAM_MODE = 0o644
SCRIPT_MODE = 0o755


class InstallError(Exception):
    """Installation cannot continue."""

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class Installer:
    """Shared plumbing for recipes: context, settings, logging, output."""

    def __init__(
        self,
        context: "Context",
        settings: Settings,
        logger: InstallLogger,
        output: Output,
        restart: bool = True,
    ):
        self.context = context
        self.settings = settings
        self.logger = logger
        self.output = output
        self.restart = restart
        self.merger = DirectiveMerger(context)

    def info(self, action: str, target: str, message: str) -> None:
        self.logger.info(message, action=action, target=target)
        self.output.step(action, target)

    def warn(self, message: str) -> None:
        self.logger.warning(message)
        self.output.warning(message)

    def require_root(self) -> None:
        if self.context.get_euid() != 0:
            raise InstallError("Please run as root (sudo).")

    def ensure_dir(self, path: str) -> None:
        try:
            created = ensure_dir(path, self.context)
        except FileError as e:
            raise InstallError(str(e), path) from e
        if created:
            self.info("mkdir", path, f"Create dir: {path}")

    def write_script(self, path: str, body: str, overwrite: bool) -> None:
        if write_script(path, body, self.context, mode=SCRIPT_MODE, overwrite=overwrite):
            self.info("write", path, f"Writing {path}")
        else:
            self.info("keep", path, f"Keep existing: {path}")

    def ensure_directives(self, path: str, required: list[payloads.RequiredDirective]) -> None:
        for directive in required:
            outcome = self.merger.ensure_directive_present(path, directive.key, directive.line)
            if outcome == Outcome.APPENDED:
                self.info("append", path, f"Append line to {path}: {directive.line}")
            else:
                self.logger.info(f"Line already present in {path} (key: {directive.key})")

    def seed_or_merge(self, base_path: str, target_path: str) -> None:
        """Copy base to target when absent, otherwise merge missing keys."""
        if not self.context.file_exists(target_path):
            self.context.copy_file(base_path, target_path)
            self.context.chmod(target_path, USERPARAM_MODE)
            self.info("seed", target_path, f"Seed userparameter file: {target_path}")
            return

        self.logger.info(f"Userparameter file exists; merging missing keys: {target_path}")
        report = self.merger.merge_all_directives(base_path, target_path)
        for key in report.merged_keys:
            self.info("merge", target_path, f"Merge missing key: {key}")
        for line in report.malformed:
            self.warn(f"Skipping malformed directive in {base_path}: {line}")
        self.output.emit({"merge": report.to_dict()})

    def chmod(self, path: str, mode: int) -> None:
        try:
            self.context.chmod(path, mode)
        except OSError as e:
            self.warn(f"chmod {oct(mode)} {path} failed: {e}")

    def restart_agent(self, policy: RestartPolicy, service: str, manual_hint: str) -> str | None:
        if not self.restart:
            self.logger.info("Skipping agent restart")
            return None
        try:
            restarted = restart_agent(
                self.context,
                policy=policy,
                service=service,
                zabbix_dir=self.settings.zabbix_dir,
            )
        except CommandError as e:
            raise InstallError(f"{e}; check 'systemctl status {service}'") from e
        if restarted:
            self.info("restart", restarted, f"Restarted {restarted}")
            self.output.emit({"restarted": restarted})
        else:
            self.warn(manual_hint)
        return restarted


def install_vendored(installer: Installer) -> None:
    """
    Install from the templates bundled with zbxgpu.

    Seeds or merges the userparameter file, ensures the unknown-error,
    gpu-error and NVLink status keys, then restarts whichever agent exists.
    """
    ctx = installer.context
    settings = installer.settings
    installer.require_root()

    base_get_gpus = str(payloads.bundled_path(payloads.GET_GPUS_INFO))
    base_userparam = str(payloads.bundled_path(payloads.USERPARAM_BASE))
    for path in (base_get_gpus, base_userparam):
        if not ctx.file_exists(path):
            raise InstallError(f"Bundled base file missing: {path}", path)

    clone_dir = None
    if settings.clone_upstream:
        clone_dir, reason = clone_upstream(settings.upstream_repo_url, settings.tmpdir, ctx)
        if clone_dir:
            installer.logger.info(f"Cloned upstream reference: {settings.upstream_repo_url} -> {clone_dir}")
        else:
            installer.warn(reason)
    else:
        installer.logger.info("Skip cloning upstream (clone_upstream disabled)")

    try:
        installer.ensure_dir(settings.scripts_dir)
        installer.ensure_dir(settings.bin_dir)

        get_gpus_dst = f"{settings.scripts_dir}/{payloads.GET_GPUS_INFO}"
        if install_file_if_missing(base_get_gpus, get_gpus_dst, ctx, mode=SCRIPT_MODE):
            installer.info("install", get_gpus_dst, f"Install file: {get_gpus_dst}")
        else:
            installer.info("keep", get_gpus_dst, f"Keep existing file (no overwrite): {get_gpus_dst}")

        installer.write_script(
            f"{settings.bin_dir}/{payloads.ERR_CHECK_SCRIPT}",
            payloads.ERR_CHECK_XID,
            overwrite=False,
        )

        userparam_path = detect_userparam_path(
            ctx, payloads.USERPARAM_BASE, zabbix_dir=settings.zabbix_dir
        )
        installer.ensure_dir(os.path.dirname(userparam_path))
        installer.output.emit({"userparam_path": userparam_path})

        installer.seed_or_merge(base_userparam, userparam_path)
        installer.ensure_directives(userparam_path, payloads.vendored_directives(settings.bin_dir))
        installer.chmod(userparam_path, USERPARAM_MODE)

        if not include_confirmed(ctx, settings.zabbix_dir):
            installer.warn(
                f"Could not confirm agent Include for: {os.path.dirname(userparam_path)}/*.conf; "
                "if gpu.unknown_error shows 'Not supported', verify Include=... in zabbix_agent*.conf"
            )

        installer.restart_agent(
            RestartPolicy.DETECTED,
            service="zabbix-agent2",
            manual_hint="Could not detect zabbix-agent service name; please restart agent manually.",
        )
    finally:
        if cleanup_clone(clone_dir, ctx):
            installer.logger.debug(f"Removed {clone_dir}")

    installer.output.set_summary(
        "Done. Create item gpu.unknown_error (Numeric) and a trigger last(...)>0 in Zabbix."
    )


def install_upstream(installer: Installer) -> None:
    """
    Install the discovery script and userparameters from the upstream repo.

    Downloads are mandatory: a failed fetch aborts the install. The
    downloaded userparameter file is merged into any existing one.
    """
    ctx = installer.context
    settings = installer.settings
    installer.require_root()

    agent = detect_agent(ctx, settings.zabbix_dir)
    if agent is None:
        raise InstallError(
            "Neither zabbix-agent2 nor zabbix-agent service found. Please install Zabbix Agent first."
        )
    installer.logger.info(f"Detected Zabbix {agent.name} (service: {agent.service})")
    installer.output.emit({
        "agent": agent.name,
        "service": agent.service,
        "main_conf": agent.main_conf,
        "include_dir": agent.include_dir,
    })

    if ctx.check_tool("nvidia-smi"):
        installer.logger.info("nvidia-smi detected")
    else:
        installer.warn("'nvidia-smi' not found in PATH. The template requires the NVIDIA driver.")

    installer.ensure_dir(settings.scripts_dir)
    installer.ensure_dir(agent.include_dir)

    script_dst = f"{settings.scripts_dir}/{payloads.GET_GPUS_INFO}"
    staged_conf = f"{settings.tmpdir.rstrip('/')}/zbxgpu.{os.getpid()}.{payloads.USERPARAM_UPSTREAM}"
    target_conf = f"{agent.include_dir}/{payloads.USERPARAM_BASE}"

    try:
        fetch(f"{settings.upstream_raw_url}/{payloads.GET_GPUS_INFO}", script_dst, ctx)
        installer.info("download", script_dst, f"Downloaded GPU script -> {script_dst}")
        installer.chmod(script_dst, SCRIPT_MODE)

        fetch(f"{settings.upstream_raw_url}/{payloads.USERPARAM_UPSTREAM}", staged_conf, ctx)
        installer.seed_or_merge(staged_conf, target_conf)
    except FetchError as e:
        raise InstallError(str(e)) from e
    finally:
        if ctx.file_exists(staged_conf):
            ctx.remove_file(staged_conf)

    try:
        outcome = ensure_include_line(ctx, agent)
    except FileNotFoundError as e:
        raise InstallError(f"Main config not found: {agent.main_conf}", agent.main_conf) from e
    if outcome == Outcome.APPENDED:
        installer.info("append", agent.main_conf, f"Adding Include line to {agent.main_conf}")
    else:
        installer.logger.info(f"Include line already present in {agent.main_conf}")

    restarted = installer.restart_agent(
        RestartPolicy.DETECTED,
        service=agent.service,
        manual_hint=f"Could not restart {agent.service}; please restart agent manually.",
    )
    if restarted:
        status = agent_status(ctx, agent.service)
        if status:
            installer.output.emit({"service_status": status})

    result = self_test(ctx, agent, "gpu.discovery")
    if result is None:
        installer.warn(f"Cannot find {agent.test_bin} to self-test key; skipping.")
    else:
        installer.output.emit({"self_test": result})

    installer.output.set_summary(
        'Done. Import the "zbx_nvidia-smi-multi-gpu.yaml" template and link it to this host.'
    )


def install_err_check(installer: Installer) -> None:
    """Install the nvidia-smi ERR! detector and its nvidia.gpu.error key."""
    ctx = installer.context
    settings = installer.settings
    installer.require_root()

    agent2 = agent_flavors(settings.zabbix_dir)[0]
    script_path = f"{settings.bin_dir}/{payloads.ERR_CHECK_SCRIPT}"
    conf_path = f"{agent2.include_dir}/{payloads.USERPARAM_BASE}"

    installer.ensure_dir(settings.bin_dir)
    installer.write_script(script_path, payloads.ERR_CHECK_SMI, overwrite=True)

    installer.ensure_dir(agent2.include_dir)
    if installer.merger.ensure_file_exists(conf_path, mode=USERPARAM_MODE):
        installer.info("create", conf_path, f"Create {conf_path}")
    installer.ensure_directives(conf_path, payloads.err_check_directives(settings.bin_dir))
    installer.chmod(conf_path, USERPARAM_MODE)

    installer.restart_agent(
        RestartPolicy.IF_ACTIVE,
        service=agent2.service,
        manual_hint=f"{agent2.service} not running or not found. Please start it manually.",
    )

    try:
        result = ctx.run([script_path])
        installer.output.emit({"test_output": result.stdout.strip()})
    except (OSError, subprocess.SubprocessError) as e:
        installer.warn(f"Could not run {script_path}: {e}")

    installer.output.set_summary(
        "Installation complete. Test with: zabbix_get -s <agent_ip> -k nvidia.gpu.error"
    )


def install_nvlink(installer: Installer) -> None:
    """Install NVLink inactive-link and error-counter checks."""
    ctx = installer.context
    settings = installer.settings
    installer.require_root()

    try:
        check_tool("nvidia-smi", ctx, required=True)
    except CommandError as e:
        raise InstallError(str(e)) from e

    agent2 = agent_flavors(settings.zabbix_dir)[0]
    installer.ensure_dir(settings.scripts_dir)
    installer.write_script(
        f"{settings.scripts_dir}/{payloads.NVLINK_INACTIVE_SCRIPT}",
        payloads.NVLINK_INACTIVE,
        overwrite=True,
    )
    installer.write_script(
        f"{settings.scripts_dir}/{payloads.NVLINK_ERROR_SUM_SCRIPT}",
        payloads.NVLINK_ERROR_SUM,
        overwrite=True,
    )

    installer.ensure_dir(agent2.include_dir)
    conf_path = f"{agent2.include_dir}/{payloads.NVLINK_CONF}"
    if installer.merger.ensure_file_exists(
        conf_path,
        header="GPU / NVLink error checks (created by zbxgpu)",
        mode=USERPARAM_MODE,
    ):
        installer.info("create", conf_path, f"Create {conf_path}")
    installer.ensure_directives(conf_path, payloads.nvlink_directives(settings.scripts_dir))

    installer.restart_agent(
        RestartPolicy.IF_ENABLED,
        service=agent2.service,
        manual_hint=f"{agent2.service} service is not enabled or not found. Please restart manually.",
    )

    installer.output.set_summary(
        "GPU NVLink error checks installed. Test with: zabbix_get -s <HOST_IP> -k gpu.nvlink.error.sum"
    )


RECIPES: dict[str, Callable[[Installer], None]] = {
    "vendored": install_vendored,
    "upstream": install_upstream,
    "err-check": install_err_check,
    "nvlink": install_nvlink,
}
