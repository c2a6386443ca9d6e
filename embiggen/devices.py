"""Resizers for block devices, partitions and LVM volumes.

Devices are identified by their kernel name (`vda`, `vda2`, `dm-0`) and
inspected through sysfs. Sizes in sysfs are always counted in 512 byte
sectors, regardless of the logical sector size of the device.
"""

import os
from pathlib import Path

from embiggen.resizer import DependencyResolutionError, Resizer, StateError
from embiggen.util.runners import run

SYSFS = Path("/sys")
SYSFS_SECTOR_SIZE = 512

# Don't touch partitions if less than this is unallocated behind them.
# Partitioning tools align to 1 MiB anyway.
MIN_PARTITION_GROWTH = 1024 * 1024

# 128 partition entries of 128 bytes each, as written by all common tools.
GPT_ENTRY_ARRAY_SIZE = 128 * 128


def read_sysfs(path: Path) -> str:
    return path.read_text().strip()


def block_dir(name, sysfs=SYSFS) -> Path:
    return sysfs / "class" / "block" / name


def device_name(major_minor, sysfs=SYSFS) -> str:
    """Kernel name of the block device with the given "major:minor"."""
    link = sysfs / "dev" / "block" / major_minor
    if not link.exists():
        raise DependencyResolutionError(
            None, f"no block device with number {major_minor}"
        )
    return Path(os.path.realpath(link)).name


def resizer_for_device(log, name, sysfs=SYSFS) -> Resizer:
    """Chooses the resizer for the kernel block device `name`."""
    path = block_dir(name, sysfs)
    if not path.exists():
        raise DependencyResolutionError(None, f"unknown block device {name}")

    dm_uuid = path / "dm" / "uuid"
    if dm_uuid.exists():
        if read_sysfs(dm_uuid).startswith("LVM-"):
            return LogicalVolume.from_kernel_name(log, name, sysfs)
        raise DependencyResolutionError(
            None, f"unsupported device-mapper device {name}"
        )

    partition = path / "partition"
    if partition.exists():
        # /sys/class/block/vda2 -> /sys/devices/.../vda/vda2
        disk = Path(os.path.realpath(path)).parent.name
        return Partition(log, disk, int(read_sysfs(partition)), name, sysfs)

    return BlockDevice(log, name, sysfs)


class BlockDevice(Resizer):
    """Whole disk. This is where the chain ends.

    The hypervisor grows the disk, we can only make sure the kernel has
    noticed. Virtio disks update their size on their own, SCSI disks need
    a rescan.
    """

    def __init__(self, log, name, sysfs=SYSFS):
        self.name = name
        self.sysfs = sysfs
        super().__init__(log)

    def __str__(self):
        return f"block device /dev/{self.name}"

    @property
    def path(self):
        return block_dir(self.name, self.sysfs)

    def sectors(self) -> int:
        return int(read_sysfs(self.path / "size"))

    def state(self):
        return f"{self.sectors()} sectors"

    def resize(self, dry_run=False):
        rescan = self.path / "device" / "rescan"
        if not rescan.exists():
            return
        if dry_run:
            self.log.info(
                "block-device-rescan-dry-run",
                _replace_msg="Would rescan {device}",
                device=f"/dev/{self.name}",
            )
            return
        self.log.debug("block-device-rescan", device=f"/dev/{self.name}")
        rescan.write_text("1")

    def dependency(self):
        return None


class Partition(Resizer):
    """Partition `number` on `disk`, grown into unallocated space behind it.

    Only the last partition of a disk can grow. Any other partition is
    left alone.
    """

    def __init__(self, log, disk, number, name, sysfs=SYSFS):
        self.disk = disk
        self.number = number
        self.name = name
        self.sysfs = sysfs
        super().__init__(log)

    def __str__(self):
        return f"partition /dev/{self.name}"

    @property
    def disk_device(self):
        return f"/dev/{self.disk}"

    def state(self):
        size = read_sysfs(block_dir(self.name, self.sysfs) / "size")
        return f"{int(size)} sectors"

    def ensure_gpt_consistency(self, dry_run):
        """Moves the backup GPT header to the new end of the disk.

        After the disk grew, the backup header is no longer at the end and
        the space behind it can't be used. Returns whether the header was
        misplaced.
        """
        sgdisk_out = run.sgdisk("-v", self.disk_device)
        if "Problem: The secondary" not in sgdisk_out:
            return False
        if dry_run:
            self.log.info(
                "partition-gpt-relocate-dry-run",
                _replace_msg="Would move backup GPT header on {disk}",
                disk=self.disk_device,
            )
            return True
        self.log.warn("partition-gpt-relocate", out=sgdisk_out)
        run.sgdisk("-e", self.disk_device)
        return True

    def _find(self, table):
        device = f"/dev/{self.name}"
        for part in table["partitions"]:
            if part["node"] == device:
                return part
        raise StateError(
            self, f"{device} not found in partition table of {self.disk_device}"
        )

    def disk_sectors(self, table):
        """Size of the disk in units of the table's sector size."""
        disk_bytes = (
            BlockDevice(self.log, self.disk, self.sysfs).sectors()
            * SYSFS_SECTOR_SIZE
        )
        return disk_bytes // table.get("sectorsize", 512)

    def gpt_last_usable(self, table):
        """Last usable sector once the backup GPT sits at the end of the
        disk: the backup header takes the last sector, the partition entry
        array the sectors before it."""
        sector_size = table.get("sectorsize", 512)
        entry_sectors = -(-GPT_ENTRY_ARRAY_SIZE // sector_size)
        return self.disk_sectors(table) - 1 - 1 - entry_sectors

    def free_sectors(self, table):
        """Unallocated sectors between this partition and the end of the
        usable area, in units of the table's sector size."""
        part = self._find(table)
        end = part["start"] + part["size"] - 1
        if any(p["start"] > end for p in table["partitions"]):
            return 0
        if table["label"] == "gpt":
            last_usable = table["lastlba"]
        else:
            last_usable = self.disk_sectors(table) - 1
            # MBR stores 32 bit sector numbers.
            last_usable = min(last_usable, 2**32 - 1)
        return max(last_usable - end, 0)

    def resize(self, dry_run=False):
        table = run.json.sfdisk(self.disk_device)
        if table["label"] == "gpt" and self.ensure_gpt_consistency(dry_run):
            if dry_run:
                # The table still describes the disk before it grew.
                table = dict(table, lastlba=self.gpt_last_usable(table))
            else:
                table = run.json.sfdisk(self.disk_device)

        free = self.free_sectors(table)
        sector_size = table.get("sectorsize", 512)
        self.log.debug(
            "partition-free-sectors", free=free, sector_size=sector_size
        )
        if free * sector_size < MIN_PARTITION_GROWTH:
            return

        if dry_run:
            self.log.info(
                "partition-grow-dry-run",
                _replace_msg="Would grow {partition} by {free} sectors",
                partition=f"/dev/{self.name}",
                free=free,
            )
            return

        self.log.info(
            "partition-grow",
            _replace_msg="Growing partition in the partition table",
            partition=f"/dev/{self.name}",
            free=free,
        )
        run.sfdisk(
            "--no-reread",
            "--no-tell-kernel",
            "-N",
            self.number,
            self.disk_device,
            input=", +\n",
        )
        # The kernel counts the new partition size in 512 byte sectors.
        size = self._find(run.json.sfdisk(self.disk_device))["size"]
        run.resizepart(
            self.disk_device,
            self.number,
            size * sector_size // SYSFS_SECTOR_SIZE,
        )

    def dependency(self):
        return BlockDevice(self.log, self.disk, self.sysfs)


class LogicalVolume(Resizer):
    """LVM logical volume, grown into all free space of its volume group.

    We only support volume groups with a single physical volume, as only
    then it's clear which device has to grow first.
    """

    def __init__(self, log, vg, lv, sysfs=SYSFS):
        self.vg = vg
        self.lv = lv
        self.sysfs = sysfs
        super().__init__(log)

    @classmethod
    def from_kernel_name(cls, log, name, sysfs=SYSFS):
        dev = read_sysfs(block_dir(name, sysfs) / "dev")
        major, minor = dev.split(":")
        for lv in run.json.lvs(
            "-o", "vg_name,lv_name,lv_kernel_major,lv_kernel_minor"
        ):
            if (lv["lv_kernel_major"], lv["lv_kernel_minor"]) == (
                major,
                minor,
            ):
                return cls(log, lv["vg_name"], lv["lv_name"], sysfs)
        raise DependencyResolutionError(
            None, f"no LVM logical volume found for {name} ({dev})"
        )

    def __str__(self):
        return f"LVM LV {self.vg}/{self.lv}"

    @property
    def lv_path(self):
        return f"{self.vg}/{self.lv}"

    def state(self):
        lvs = run.json.lvs("-o", "lv_size", self.lv_path)
        if len(lvs) != 1:
            raise StateError(self, f"lvs returned {len(lvs)} entries")
        return f"{lvs[0]['lv_size']} bytes"

    def resize(self, dry_run=False):
        vg_free = int(run.json.vgs("-o", "vg_free", self.vg)[0]["vg_free"])
        self.log.debug("lv-vg-free", vg=self.vg, vg_free=vg_free)
        if not vg_free:
            return
        if dry_run:
            self.log.info(
                "lv-extend-dry-run",
                _replace_msg="Would extend {lv} by {vg_free} bytes",
                lv=self.lv_path,
                vg_free=vg_free,
            )
            return
        self.log.info("lv-extend", lv=self.lv_path, vg_free=vg_free)
        run.lvextend("-l", "+100%FREE", self.lv_path)

    def dependency(self):
        pvs = [
            pv
            for pv in run.json.pvs("-o", "pv_name,vg_name")
            if pv["vg_name"] == self.vg
        ]
        if len(pvs) != 1:
            raise DependencyResolutionError(
                self,
                f"volume group {self.vg} has {len(pvs)} physical volumes, "
                "can only handle exactly one",
            )
        return PhysicalVolume(self.log, pvs[0]["pv_name"], self.sysfs)


class PhysicalVolume(Resizer):
    """LVM physical volume on a partition or a whole disk."""

    def __init__(self, log, device, sysfs=SYSFS):
        self.device = device
        self.sysfs = sysfs
        super().__init__(log)

    def __str__(self):
        return f"LVM PV {self.device}"

    def _pvs(self):
        pvs = run.json.pvs(
            "-o", "pv_size,dev_size,pe_start,vg_extent_size", self.device
        )
        if len(pvs) != 1:
            raise StateError(self, f"pvs returned {len(pvs)} entries")
        return {k: int(v) for k, v in pvs[0].items()}

    def state(self):
        return f"{self._pvs()['pv_size']} bytes"

    def resize(self, dry_run=False):
        pv = self._pvs()
        unused = pv["dev_size"] - pv["pv_size"] - pv["pe_start"]
        self.log.debug("pv-unused", pv=self.device, unused=unused)
        if unused < pv["vg_extent_size"]:
            return
        if dry_run:
            self.log.info(
                "pv-resize-dry-run",
                _replace_msg="Would resize {pv}",
                pv=self.device,
            )
            return
        self.log.info("pv-resize", pv=self.device, unused=unused)
        run.pvresize(self.device)

    def dependency(self):
        return resizer_for_device(
            self.log, Path(os.path.realpath(self.device)).name, self.sysfs
        )
