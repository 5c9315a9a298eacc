"""
launchd service descriptor for running strategies as a macOS background agent.
"""
from __future__ import annotations

import plistlib
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from kraken_dca.utils.exceptions import ConfigError
from kraken_dca.utils.logging import get_logger

_log = get_logger(__name__)

DEFAULT_LABEL = "com.kraken.dca"
DEFAULT_PATH_ENV = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"


def build_plist(
    configs: Sequence[str],
    *,
    workdir: Path,
    label: str = DEFAULT_LABEL,
    python: Optional[str] = None,
) -> dict[str, Any]:
    if not configs:
        raise ConfigError("No configuration files provided")

    logs = workdir / "logs"
    return {
        "Label": label,
        "ProgramArguments": [python or sys.executable, "-m", "kraken_dca", "run", *configs],
        "WorkingDirectory": str(workdir),
        "RunAtLoad": True,
        "KeepAlive": True,
        "StandardOutPath": str(logs / "dca.log"),
        "StandardErrorPath": str(logs / "dca-error.log"),
        "EnvironmentVariables": {"PATH": DEFAULT_PATH_ENV},
        "ProcessType": "Background",
        "ThrottleInterval": 10,
    }


def write_plist(
    configs: Sequence[str],
    *,
    workdir: Optional[Path] = None,
    output: Optional[Path] = None,
    label: str = DEFAULT_LABEL,
) -> Path:
    """Render the plist and write it (default: <workdir>/<label>.plist)."""
    wd = (workdir or Path.cwd()).resolve()
    payload = build_plist(configs, workdir=wd, label=label)
    target = output or wd / f"{label}.plist"
    with open(target, "wb") as fh:
        plistlib.dump(payload, fh)
    _log.info("plist_generated", extra={"plist_path": str(target), "configs": list(configs)})
    return target


__all__ = ["DEFAULT_LABEL", "build_plist", "write_plist"]
