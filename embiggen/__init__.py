"""Live resizes filesystems, LVM volumes and partitions after the
underlying block device grew."""
