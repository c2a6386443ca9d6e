"""Live resizes a filesystem and the LVM objects and partitions below it.

Useful within a VM guest to make its filesystem bigger when the hypervisor
live resizes the underlying block device.
"""

import configparser
import subprocess
import sys
from pathlib import Path
from typing import Optional

import embiggen.systemd
import rich
import structlog
from embiggen.daemon import Daemon
from embiggen.util.config import DEFAULT_CONFIG_FILE, load_config
from embiggen.util.logging import init_logging
from embiggen.util.typer_utils import EmbiggenTyperApp, requires_root
from rich.markup import escape
from typer import Argument, Exit, Option

INSTALL_TARGET = "systemd"

app = EmbiggenTyperApp("embiggen-disk")


def fatal(message):
    rich.print(
        f"[bold red]Error:[/bold red] {escape(message)}", file=sys.stderr
    )
    raise Exit(1)


@requires_root
def install(log):
    try:
        status = embiggen.systemd.install_unit(log)
    except (OSError, subprocess.CalledProcessError) as e:
        log.error("install-unit-failed", exc_info=True)
        fatal(f"installing {embiggen.systemd.UNIT_NAME} failed: {e}")
    print(status)
    rich.print(f"Successfully setup {embiggen.systemd.UNIT_NAME}")


@app.command(help=__doc__)
def embiggen_disk(
    target: str = Argument(
        ...,
        metavar="MOUNT_POINT",
        help=(
            "Mount point to enlarge. 'systemd' installs, enables and starts "
            "a service running in daemon mode for /."
        ),
    ),
    dry_run: bool = Option(False, "--dry-run", help="Don't make changes."),
    verbose: bool = Option(
        False,
        "--verbose",
        "-v",
        help="Show debug messages, the resolved chain and code locations.",
    ),
    daemon: bool = Option(
        False,
        "--daemon",
        help="Keep running and check for a grown disk periodically.",
    ),
    config_file: Path = Option(
        DEFAULT_CONFIG_FILE,
        dir_okay=False,
        help="Daemon settings (interval, units to restart).",
    ),
    logdir: Optional[Path] = Option(
        None,
        exists=True,
        file_okay=False,
        writable=True,
        help="Also log to embiggen-disk.log in this directory.",
    ),
):
    if not sys.platform.startswith("linux"):
        fatal("embiggen-disk only runs on Linux.")

    main_log_file = None
    if logdir:
        main_log_file = open(logdir / "embiggen-disk.log", "a")
    try:
        init_logging(verbose, main_log_file)
        log = structlog.get_logger()
        if target == INSTALL_TARGET:
            install(log)
        else:
            resize_mount_point(
                log, target, config_file, dry_run, verbose, daemon
            )
    finally:
        if main_log_file:
            main_log_file.close()


def resize_mount_point(
    log, mount_point, config_file, dry_run, verbose, daemon
):
    try:
        config = load_config(
            log,
            config_file,
            mount_point=mount_point,
            dry_run=dry_run,
            verbose=verbose,
            daemon=daemon,
        )
    except (ValueError, configparser.Error) as e:
        log.error("config-invalid", exc_info=True)
        fatal(f"invalid configuration in {config_file}: {e}")

    log.info("embiggen-disk-start", **config._asdict())
    try:
        Daemon(log, config).run()
    except Exception as e:
        # Details have been logged already.
        fatal(str(e))

    log.info("embiggen-disk-finished")
