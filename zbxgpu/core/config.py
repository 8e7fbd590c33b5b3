"""Configuration loading with layered overrides."""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

if TYPE_CHECKING:
    from zbxgpu.core.context import Context


PROJECT_CONFIG = Path(".zbxgpu.yaml")


def user_config_path() -> Path:
    """Per-user config file (~/.config/zbxgpu/config.yaml)."""
    return Path.home() / ".config" / "zbxgpu" / "config.yaml"


# Environment overrides
ENV_OVERRIDES = {
    "upstream_repo_url": "PLAMBE_REPO_URL",
    "clone_upstream": "CLONE_PLAMBE",
    "quiet": "QUIET",
    "tmpdir": "TMPDIR",
    "log_dir": "ZBXGPU_LOG_DIR",
}

TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class Settings:
    """Resolved installer settings."""

    upstream_repo_url: str = "https://github.com/plambe/zabbix-nvidia-smi-multi-gpu.git"
    upstream_raw_url: str = "https://raw.githubusercontent.com/plambe/zabbix-nvidia-smi-multi-gpu/master"
    clone_upstream: bool = True
    quiet: bool = False
    tmpdir: str = "/tmp"
    zabbix_dir: str = "/etc/zabbix"
    scripts_dir: str = "/etc/zabbix/scripts"
    bin_dir: str = "/usr/local/bin"
    log_dir: str | None = None


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML config file if it exists."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError):
        return {}
    if not isinstance(data, dict):
        return {}
    return data


def _coerce(name: str, value: Any) -> Any:
    if name in ("clone_upstream", "quiet"):
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in TRUE_VALUES
    return str(value)


def load_settings(
    context: "Context | None" = None,
    project_path: Path | None = None,
    user_path: Path | None = None,
) -> Settings:
    """
    Resolve settings with env -> project -> user -> default precedence.

    Args:
        context: Execution context (for environment lookups)
        project_path: Project config file (default: ./.zbxgpu.yaml)
        user_path: User config file (default: ~/.config/zbxgpu/config.yaml)

    Returns:
        Settings instance
    """
    if context is None:
        from zbxgpu.core.context import Context
        context = Context()

    layers = [
        load_config_file(user_path or user_config_path()),
        load_config_file(project_path or PROJECT_CONFIG),
    ]

    values: dict[str, Any] = {}
    known = {f.name for f in fields(Settings)}
    for layer in layers:
        for key, value in layer.items():
            if key in known and value is not None:
                values[key] = _coerce(key, value)

    for key, env_name in ENV_OVERRIDES.items():
        env_value = context.get_env(env_name)
        if env_value:
            values[key] = _coerce(key, env_value)

    return Settings(**values)
