"""Resizers for mounted filesystems.

All of them grow online, while mounted, to the size of the underlying
block device.
"""

import os

from embiggen.devices import SYSFS, device_name, resizer_for_device
from embiggen.resizer import Resizer
from embiggen.util.runners import run


class Filesystem(Resizer):
    """Filesystem described by a mountinfo entry (see `embiggen.chain`)."""

    def __init__(self, log, mount, sysfs=SYSFS):
        self.mount = mount
        self.sysfs = sysfs
        super().__init__(log)

    def __str__(self):
        return f"{self.mount.fstype} filesystem at {self.mount.mount_point}"

    @property
    def device(self):
        """Device node of the filesystem.

        mountinfo may show /dev/root or a /dev/mapper symlink, the kernel
        name from sysfs is unambiguous.
        """
        return f"/dev/{device_name(self.mount.major_minor, self.sysfs)}"

    def state(self):
        st = os.statvfs(self.mount.mount_point)
        return f"{st.f_blocks} blocks of {st.f_frsize} bytes"

    def grow_cmd(self) -> list[str]:
        raise NotImplementedError

    def resize(self, dry_run=False):
        tool, *args = self.grow_cmd()
        if dry_run:
            self.log.info(
                "filesystem-grow-dry-run",
                _replace_msg="Would run: {cmd}",
                cmd=" ".join([tool, *args]),
            )
            return
        self.log.info(
            "filesystem-grow",
            _replace_msg="Growing {fstype} filesystem at {mount_point}",
            fstype=self.mount.fstype,
            mount_point=self.mount.mount_point,
        )
        getattr(run, tool)(*args)

    def dependency(self):
        return resizer_for_device(
            self.log,
            device_name(self.mount.major_minor, self.sysfs),
            self.sysfs,
        )


class ExtFilesystem(Filesystem):
    def grow_cmd(self):
        # resize2fs says "Nothing to do!" and succeeds if there is no space
        # to grow into.
        return ["resize2fs", self.device]


class XFSFilesystem(Filesystem):
    def grow_cmd(self):
        return ["xfs_growfs", self.mount.mount_point]


class BtrfsFilesystem(Filesystem):
    def grow_cmd(self):
        return ["btrfs", "filesystem", "resize", "max", self.mount.mount_point]


FILESYSTEMS = {
    "ext2": ExtFilesystem,
    "ext3": ExtFilesystem,
    "ext4": ExtFilesystem,
    "xfs": XFSFilesystem,
    "btrfs": BtrfsFilesystem,
}
