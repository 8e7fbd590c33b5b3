"""Helper scripts and UserParameter lines placed by the installer.

The helper bodies are opaque to zbxgpu: they are written to disk and
executed by the agent, never interpreted here.
"""

from dataclasses import dataclass
from pathlib import Path

from zbxgpu.core.directives import DirectiveKey

RAW_DIR = Path(__file__).parent / "raw"

GET_GPUS_INFO = "get_gpus_info.sh"
USERPARAM_BASE = "userparameter_nvidia-smi.conf"
USERPARAM_UPSTREAM = "userparameter_nvidia-smi.conf.linux"
ERR_CHECK_SCRIPT = "check_gpu_err_simple.sh"
NVLINK_INACTIVE_SCRIPT = "nvlink_inactive_count.sh"
NVLINK_ERROR_SUM_SCRIPT = "nvlink_error_sum.sh"
NVLINK_CONF = "gpu_err_check.conf"


def bundled_path(name: str) -> Path:
    """Path of a file shipped in zbxgpu/raw."""
    return RAW_DIR / name


@dataclass(frozen=True)
class RequiredDirective:
    """A directive a recipe guarantees in its target file."""

    item: str
    command: str

    @property
    def key(self) -> DirectiveKey:
        return DirectiveKey.for_item(self.item)

    @property
    def line(self) -> str:
        return f"{self.key},{self.command}"


# Kernel log flavor (vendored recipe)
ERR_CHECK_XID = """\
#!/usr/bin/env bash
set -euo pipefail
# 0=OK, 1=problem detected
# Lightweight heuristic: check kernel log for NVIDIA Xid / NVML errors.
window_minutes="${WINDOW_MINUTES:-10}"
if command -v journalctl >/dev/null 2>&1; then
  if journalctl -k --since "${window_minutes} min ago" 2>/dev/null | grep -Eqi 'NVRM: Xid|Xid \\(|NVML:|Unable to determine the device handle|Unknown Error'; then
    echo 1; exit 0
  fi
else
  if dmesg 2>/dev/null | tail -n 2000 | grep -Eqi 'NVRM: Xid|Xid \\(|NVML:|Unable to determine the device handle|Unknown Error'; then
    echo 1; exit 0
  fi
fi
echo 0
"""

# nvidia-smi ERR! flavor (err-check recipe)
ERR_CHECK_SMI = """\
#!/bin/bash
# Return 1 if nvidia-smi output contains "ERR!", else 0.

NVIDIA_SMI="/usr/bin/nvidia-smi"

if [ ! -x "$NVIDIA_SMI" ]; then
  echo 0
  exit 0
fi

if "$NVIDIA_SMI" 2>/dev/null | grep -q "ERR!"; then
  echo 1
else
  echo 0
fi
"""

NVLINK_INACTIVE = """\
#!/usr/bin/env bash
# Count NVLink links reported as <inactive> or 0.000 GB/s
set -euo pipefail

NVSMI_BIN="$(command -v nvidia-smi)"

# No nvlink subcommand: report 0 instead of an unsupported item
if ! "${NVSMI_BIN}" nvlink --status >/dev/null 2>&1; then
  echo 0
  exit 0
fi

"${NVSMI_BIN}" nvlink --status \\
  | grep -E "<inactive>|0\\.000 GB/s" \\
  | wc -l
"""

NVLINK_ERROR_SUM = """\
#!/usr/bin/env bash
# Sum all NVLink error counters (CRC, replay, recovery, ...)
set -euo pipefail

NVSMI_BIN="$(command -v nvidia-smi)"

if ! "${NVSMI_BIN}" nvlink --error-counters >/dev/null 2>&1; then
  echo 0
  exit 0
fi

"${NVSMI_BIN}" nvlink --error-counters \\
  | grep -E "Error Counter" \\
  | awk '{sum += $NF} END {print (sum == "" ? 0 : sum)}'
"""


def vendored_directives(bin_dir: str) -> list[RequiredDirective]:
    """Keys the vendored recipe appends when missing."""
    return [
        RequiredDirective(
            "gpu.unknown_error",
            "/usr/bin/nvidia-smi -L 2>&1 | grep -c 'Unknown Error'",
        ),
        RequiredDirective("nvidia.gpu.error", f"{bin_dir}/{ERR_CHECK_SCRIPT}"),
        RequiredDirective("gpu.nvlink.status", "/usr/bin/nvidia-smi nvlink --status"),
    ]


def err_check_directives(bin_dir: str) -> list[RequiredDirective]:
    return [RequiredDirective("nvidia.gpu.error", f"{bin_dir}/{ERR_CHECK_SCRIPT}")]


def nvlink_directives(scripts_dir: str) -> list[RequiredDirective]:
    return [
        RequiredDirective("gpu.nvlink.inactive.count", f"{scripts_dir}/{NVLINK_INACTIVE_SCRIPT}"),
        RequiredDirective("gpu.nvlink.error.sum", f"{scripts_dir}/{NVLINK_ERROR_SUM_SCRIPT}"),
    ]
