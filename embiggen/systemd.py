"""Runs embiggen-disk as systemd service and restarts dependent units."""

import shutil
import subprocess
from pathlib import Path

UNIT_NAME = "embiggen-disk.service"
UNIT_PATH = Path("/etc/systemd/system") / UNIT_NAME
DEFAULT_EXECUTABLE = "/usr/local/bin/embiggen-disk"

UNIT_TEMPLATE = """\
[Unit]
Description=embiggen-disk

[Service]
ExecStart={executable} --verbose --daemon /

[Install]
WantedBy=multi-user.target"""


def systemctl(*args, check=True):
    return subprocess.run(
        ["systemctl", *args],
        check=check,
        text=True,
        capture_output=True,
    )


def unit_file_content(executable=None):
    if executable is None:
        executable = shutil.which("embiggen-disk") or DEFAULT_EXECUTABLE
    return UNIT_TEMPLATE.format(executable=executable)


def install_unit(log, unit_path=UNIT_PATH, executable=None) -> str:
    """Writes the unit file, enables and starts the service.

    Returns the output of `systemctl status`.
    """
    unit_path.write_text(unit_file_content(executable))
    log.info("install-unit-written", unit_path=str(unit_path))

    systemctl("daemon-reload")
    systemctl("enable", UNIT_NAME)
    systemctl("start", UNIT_NAME)
    log.info("install-unit-started", unit=UNIT_NAME)

    status = systemctl("status", UNIT_NAME, check=False)
    if status.returncode:
        log.warn(
            "install-unit-status-failed",
            unit=UNIT_NAME,
            returncode=status.returncode,
            stderr=status.stderr,
        )
    return status.stdout


def restart_units(log, units, dry_run=False):
    """Restarts units that need to see the new capacity, e.g. kubelet.

    Failures are logged but not raised, a failing restart must not stop
    the resize loop.
    """
    for unit in units:
        if dry_run:
            log.info(
                "restart-unit-dry-run",
                _replace_msg="Would restart {unit}",
                unit=unit,
            )
            continue
        try:
            systemctl("restart", unit)
        except (OSError, subprocess.CalledProcessError) as e:
            log.error(
                "restart-unit-failed",
                unit=unit,
                exc_info=True,
                stderr=getattr(e, "stderr", None),
            )
        else:
            log.info(
                "restart-unit",
                _replace_msg="Restarted {unit}",
                unit=unit,
            )
