"""Zabbix agent flavor detection and service handling."""

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from zbxgpu.core.merger import Outcome
from zbxgpu.lib.filesystem import read_file
from zbxgpu.lib.process import run_command

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


DEFAULT_ZABBIX_DIR = "/etc/zabbix"
USERPARAM_FILENAME = "userparameter_nvidia-smi.conf"
STATUS_LINES = 20


@dataclass(frozen=True)
class AgentFlavor:
    """An installed Zabbix agent variant."""

    name: str
    service: str
    main_conf: str
    include_dir: str
    test_bin: str

    @property
    def unit(self) -> str:
        return f"{self.service}.service"

    @property
    def include_line(self) -> str:
        return f"Include={self.include_dir}/*.conf"


def agent_flavors(zabbix_dir: str = DEFAULT_ZABBIX_DIR) -> tuple[AgentFlavor, AgentFlavor]:
    """Known flavors, in preference order (agent2 first)."""
    return (
        AgentFlavor(
            name="agent2",
            service="zabbix-agent2",
            main_conf=f"{zabbix_dir}/zabbix_agent2.conf",
            include_dir=f"{zabbix_dir}/zabbix_agent2.d",
            test_bin="zabbix_agent2",
        ),
        AgentFlavor(
            name="agentd",
            service="zabbix-agent",
            main_conf=f"{zabbix_dir}/zabbix_agentd.conf",
            include_dir=f"{zabbix_dir}/zabbix_agentd.d",
            test_bin="zabbix_agentd",
        ),
    )


class RestartPolicy(str, Enum):
    """When to restart the agent after configuration changes."""

    DETECTED = "detected"
    IF_ACTIVE = "if-active"
    IF_ENABLED = "if-enabled"


def list_unit_files(context: "Context") -> list[str]:
    """Unit names known to systemd, empty if systemctl is unavailable."""
    try:
        result = context.run(["systemctl", "list-unit-files"])
    except Exception:
        return []
    if result.returncode != 0:
        return []

    units = []
    for line in result.stdout.splitlines():
        parts = line.split()
        if parts:
            units.append(parts[0])
    return units


def detect_agent(
    context: "Context",
    zabbix_dir: str = DEFAULT_ZABBIX_DIR,
) -> AgentFlavor | None:
    """
    Detect the installed agent from systemd unit files.

    Returns:
        AgentFlavor for zabbix-agent2 if present, else zabbix-agent, else None
    """
    units = set(list_unit_files(context))
    for flavor in agent_flavors(zabbix_dir):
        if flavor.unit in units:
            return flavor
    return None


def detect_userparam_path(
    context: "Context",
    filename: str = USERPARAM_FILENAME,
    zabbix_dir: str = DEFAULT_ZABBIX_DIR,
) -> str:
    """
    Choose where the userparameter file lives.

    An existing file under agent2.d or agentd.d wins; otherwise agent2.d
    if that directory exists, else agentd.d.
    """
    agent2, agentd = agent_flavors(zabbix_dir)
    agent2_path = f"{agent2.include_dir}/{filename}"
    agentd_path = f"{agentd.include_dir}/{filename}"

    if context.file_exists(agent2_path):
        return agent2_path
    if context.file_exists(agentd_path):
        return agentd_path
    if context.is_dir(agent2.include_dir):
        return agent2_path
    return agentd_path


def ensure_include_line(context: "Context", agent: AgentFlavor) -> Outcome:
    """
    Make sure the main agent config includes the agent .d directory.

    Raises:
        FileNotFoundError: If the main config does not exist
    """
    contents = context.read_file(agent.main_conf)
    pattern = re.compile(
        r"^\s*Include\s*=\s*" + re.escape(agent.include_dir) + r"/\*\.conf",
        re.IGNORECASE | re.MULTILINE,
    )
    if pattern.search(contents):
        return Outcome.PRESENT

    text = f"\n{agent.include_line}\n"
    if contents and not contents.endswith("\n"):
        text = "\n" + text
    context.append_file(agent.main_conf, text)
    return Outcome.APPENDED


def include_confirmed(context: "Context", zabbix_dir: str = DEFAULT_ZABBIX_DIR) -> bool:
    """Best-effort check that some main config includes an agent .d directory."""
    candidates = [
        f"{zabbix_dir}/zabbix_agent2.conf",
        f"{zabbix_dir}/zabbix_agentd.conf",
        f"{zabbix_dir}/agent2.conf",
        f"{zabbix_dir}/agentd.conf",
    ]
    pattern = re.compile(
        r"^[ \t]*Include[ \t]*=" + re.escape(zabbix_dir) + r"/zabbix_agent(d|2)\.d/\*\.conf",
        re.MULTILINE,
    )

    for path in candidates:
        try:
            contents = read_file(path, context, default="")
        except OSError:
            continue
        if pattern.search(contents):
            return True
    return False


def _restart(context: "Context", service: str) -> str:
    run_command(["systemctl", "restart", service], context=context, check=True)
    return service


def _probe(context: "Context", cmd: list[str]) -> bool:
    try:
        return context.run(cmd).returncode == 0
    except Exception:
        return False


def restart_agent(
    context: "Context",
    policy: RestartPolicy = RestartPolicy.DETECTED,
    service: str = "zabbix-agent2",
    zabbix_dir: str = DEFAULT_ZABBIX_DIR,
) -> str | None:
    """
    Restart the agent service according to policy.

    Args:
        context: Execution context
        policy: DETECTED restarts whichever unit exists (agent2 first);
            IF_ACTIVE / IF_ENABLED restart service only in that state
        service: Service name for IF_ACTIVE / IF_ENABLED
        zabbix_dir: Zabbix configuration root

    Returns:
        Restarted service name, or None if nothing was restarted

    Raises:
        CommandError: If systemctl restart itself fails
    """
    if policy == RestartPolicy.DETECTED:
        agent = detect_agent(context, zabbix_dir)
        if agent is None:
            return None
        return _restart(context, agent.service)

    if policy == RestartPolicy.IF_ACTIVE:
        probe = ["systemctl", "is-active", "--quiet", service]
    else:
        probe = ["systemctl", "is-enabled", service]

    if not _probe(context, probe):
        return None
    return _restart(context, service)


def agent_status(context: "Context", service: str) -> str:
    """First lines of systemctl status, empty on failure."""
    try:
        result = context.run(["systemctl", "--no-pager", "--full", "status", service])
    except Exception:
        return ""
    lines = result.stdout.splitlines()[:STATUS_LINES]
    return "\n".join(lines)


def self_test(context: "Context", agent: AgentFlavor, key: str) -> str | None:
    """
    Ask the local agent binary to evaluate a key (``<bin> -t <key>``).

    Returns:
        Agent output, or None if the binary is missing or fails to run
    """
    if not context.check_tool(agent.test_bin):
        return None
    try:
        result = context.run([agent.test_bin, "-t", key])
    except Exception:
        return None
    return (result.stdout or result.stderr).strip()
