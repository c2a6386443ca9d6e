"""Builds the resizer chain for a mount point."""

import os
import re
from pathlib import Path
from typing import NamedTuple

from embiggen.devices import SYSFS
from embiggen.filesystem import FILESYSTEMS

MOUNTINFO = Path("/proc/self/mountinfo")


class ChainResolutionError(Exception):
    pass


class Mount(NamedTuple):
    major_minor: str
    mount_point: str
    fstype: str
    source: str


_escape = re.compile(r"\\([0-7]{3})")


def _unescape(field):
    # mountinfo escapes space, tab, newline and backslash as octal.
    return _escape.sub(lambda m: chr(int(m.group(1), 8)), field)


def parse_mountinfo(text) -> list[Mount]:
    """Parses /proc/<pid>/mountinfo, see proc(5).

    36 35 98:0 /mnt1 /mnt/parent rw,noatime master:1 - ext3 /dev/root rw
    (1)(2)(3)   (4)   (5)         (6)       (7)    (8) (9)   (10)    (11)
    """
    mounts = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split()
        try:
            separator = fields.index("-", 6)
        except ValueError:
            raise ChainResolutionError(f"malformed mountinfo line: {line!r}")
        mounts.append(
            Mount(
                major_minor=fields[2],
                mount_point=_unescape(fields[4]),
                fstype=fields[separator + 1],
                source=_unescape(fields[separator + 2]),
            )
        )
    return mounts


def find_mount(mounts, mount_point) -> Mount:
    """Returns the mount visible at `mount_point`.

    Later entries are mounted on top of earlier ones, so the last match
    wins.
    """
    mount_point = os.path.abspath(mount_point)
    for mount in reversed(mounts):
        if mount.mount_point == mount_point:
            return mount
    raise ChainResolutionError(f"{mount_point} is not a mount point")


def resolve_chain(log, mount_point, mountinfo=MOUNTINFO, sysfs=SYSFS):
    """Returns the filesystem resizer for `mount_point`.

    Its dependencies lead down to the disk and are only looked up while
    the chain is resized.
    """
    mount = find_mount(parse_mountinfo(mountinfo.read_text()), mount_point)
    log.debug("resolve-chain-mount", **mount._asdict())
    cls = FILESYSTEMS.get(mount.fstype)
    if cls is None:
        raise ChainResolutionError(
            f"unsupported filesystem type {mount.fstype} at {mount.mount_point}"
        )
    resizer = cls(log, mount, sysfs)
    log.debug("resolve-chain", mount_point=mount_point, resizer=repr(resizer))
    return resizer
