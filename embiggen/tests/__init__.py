import subprocess

from embiggen.resizer import Resizer


class FakeDisk:
    def __init__(self, size):
        self.size = size


class FakeResizer(Resizer):
    """Resizer that grows to the size of its dependency, or of `disk` if it
    has none. Records every call in `calls`.

    `fail` names operations that raise: "state", "dependency", "resize",
    or "post-state" (state fails only after a resize).
    """

    def __init__(
        self, log, name, size, dep=None, disk=None, calls=None, fail=()
    ):
        self.name = name
        self.size = size
        self.dep = dep
        self.disk = disk
        self.calls = [] if calls is None else calls
        self.fail = set(fail)
        self.resized = False
        super().__init__(log)

    def __str__(self):
        return self.name

    def state(self):
        self.calls.append(("state", self.name))
        if "state" in self.fail or (
            "post-state" in self.fail and self.resized
        ):
            raise OSError(f"cannot read {self.name}")
        return self.size

    def resize(self, dry_run=False):
        self.calls.append(("resize", self.name))
        if "resize" in self.fail:
            raise subprocess.CalledProcessError(5, ["grow", self.name])
        self.resized = True
        if dry_run:
            return
        self.size = self.dep.size if self.dep else self.disk.size

    def dependency(self):
        self.calls.append(("dependency", self.name))
        if "dependency" in self.fail:
            raise OSError(f"cannot find dependency of {self.name}")
        return self.dep


def make_chain(log, disk, size="100G", fail=None):
    """Filesystem -> Volume -> Partition, as in a typical VM.

    `fail` maps resizer names to operations that should fail.
    """
    fail = fail or {}
    calls = []
    partition = FakeResizer(
        log,
        "Partition",
        size,
        disk=disk,
        calls=calls,
        fail=fail.get("Partition", ()),
    )
    volume = FakeResizer(
        log,
        "Volume",
        size,
        dep=partition,
        calls=calls,
        fail=fail.get("Volume", ()),
    )
    filesystem = FakeResizer(
        log,
        "Filesystem",
        size,
        dep=volume,
        calls=calls,
        fail=fail.get("Filesystem", ()),
    )
    return filesystem, calls


def resize_order(calls):
    return [name for op, name in calls if op == "resize"]
