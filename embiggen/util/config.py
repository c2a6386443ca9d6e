import configparser
from pathlib import Path
from typing import NamedTuple

DEFAULT_CONFIG_FILE = Path("/etc/embiggen-disk.conf")
DEFAULT_INTERVAL = 10.0
DEFAULT_RESTART_UNITS = ("kubelet.service",)


class Config(NamedTuple):
    mount_point: str
    dry_run: bool = False
    verbose: bool = False
    daemon: bool = False
    # Seconds between two resize attempts in daemon mode.
    interval: float = DEFAULT_INTERVAL
    # Units restarted after a resize changed something.
    restart_units: tuple[str, ...] = DEFAULT_RESTART_UNITS


def parse_config(log, config_file: Path):
    config = configparser.ConfigParser()
    if config_file:
        if config_file.is_file():
            log.debug(
                "parse-config",
                config_file=str(config_file),
            )
            config.read(config_file)
        else:
            log.warn(
                "parse-config-not-found",
                config_file=str(config_file),
            )

    return config


def load_config(
    log,
    config_file: Path,
    mount_point: str,
    dry_run=False,
    verbose=False,
    daemon=False,
) -> Config:
    """Combines the config file with command line flags.

    The file only provides daemon tuning, flags always come from the
    command line.
    """
    parser = parse_config(log, config_file)

    interval = parser.getfloat(
        "daemon", "interval", fallback=DEFAULT_INTERVAL
    )
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval}")

    restart_units = parser.get("daemon", "restart-units", fallback=None)
    if restart_units is None:
        restart_units = DEFAULT_RESTART_UNITS
    else:
        restart_units = tuple(restart_units.split())

    config = Config(
        mount_point=mount_point,
        dry_run=dry_run,
        verbose=verbose,
        daemon=daemon,
        interval=interval,
        restart_units=restart_units,
    )
    log.debug("load-config", **config._asdict())
    return config
