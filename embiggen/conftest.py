import structlog
from pytest import fixture


@fixture
def logger(log):
    # Loggers bound before pytest-structlog's `log` fixture is set up are
    # not captured, so resizers built in fixtures need it first.
    return structlog.get_logger()


@fixture
def sysfs(tmp_path):
    """Fake /sys with a virtio disk vda and partitions vda1, vda2."""
    root = tmp_path / "sys"
    devices = root / "devices" / "pci0000:00" / "virtio1" / "block"
    disk = devices / "vda"
    disk.mkdir(parents=True)
    (disk / "size").write_text("314572800\n")
    (disk / "dev").write_text("253:0\n")
    for number, size in ((1, 2048), (2, 209711104)):
        part = disk / f"vda{number}"
        part.mkdir()
        (part / "size").write_text(f"{size}\n")
        (part / "partition").write_text(f"{number}\n")
        (part / "dev").write_text(f"253:{number}\n")

    class_block = root / "class" / "block"
    class_block.mkdir(parents=True)
    dev_block = root / "dev" / "block"
    dev_block.mkdir(parents=True)
    for name, target in (
        ("vda", disk),
        ("vda1", disk / "vda1"),
        ("vda2", disk / "vda2"),
    ):
        (class_block / name).symlink_to(target)
        dev = (target / "dev").read_text().strip()
        (dev_block / dev).symlink_to(target)
    return root
