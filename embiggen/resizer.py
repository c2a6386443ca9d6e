"""Resizers and the chain resize algorithm.

A resizer represents one layer of the storage stack below a mounted
filesystem: the filesystem itself, an LVM volume, a partition or the raw
block device. Every resizer can depend on exactly one other resizer which
has to grow first because it provides the space. Following the dependencies
from the filesystem leads down to the disk the hypervisor enlarged.

Resizers are built fresh for every resize attempt and re-read their state
from the live system on each call. Nothing is cached between attempts.
"""

from typing import NamedTuple, Optional


class Resizer:
    """One resizable layer of the storage stack.

    Subclasses implement `__str__`, `state`, `resize` and `dependency`.
    """

    def __init__(self, log):
        self.log = log.bind(resizer=str(self))

    def __str__(self):
        """Stable identity for logging and change reports, e.g.
        "ext4 filesystem at /". Must not fail."""
        raise NotImplementedError

    def __repr__(self):
        return f"<{self.__class__.__name__} {self}>"

    def state(self) -> str:
        """Current size snapshot, read from the system on every call.

        The value is opaque and only compared for equality, e.g.
        "534 blocks".
        """
        raise NotImplementedError

    def resize(self, dry_run=False):
        """Grows this layer to the maximum its dependency allows.

        Must be a no-op if there is nothing to grow. With `dry_run`, no
        mutating command is run; implementations log what they would do.
        """
        raise NotImplementedError

    def dependency(self) -> Optional["Resizer"]:
        """The next resizer down the chain, or None at the bottom."""
        raise NotImplementedError


class ChangeRecord(NamedTuple):
    description: str
    before: str
    after: str

    def __str__(self):
        return f"{self.description}: before: {self.before}, after: {self.after}"


class ResizeError(Exception):
    """A chain resize aborted.

    `changes` holds the changes confirmed at deeper levels before the
    failure, dependency first.
    """

    stage = "resize"

    def __init__(self, resizer, message, changes=None):
        super().__init__(message)
        self.resizer = resizer
        self.changes = list(changes or [])

    @classmethod
    def wrap(cls, resizer, exc, changes=None):
        return cls(resizer, f"{cls.stage} failed for {resizer}: {exc}", changes)


class StateError(ResizeError):
    stage = "state read"


class DependencyResolutionError(ResizeError):
    stage = "dependency resolution"


class ResizeExecutionError(ResizeError):
    stage = "resize"


class PostResizeStateError(ResizeError):
    stage = "post-resize confirmation"

    @classmethod
    def wrap(cls, resizer, exc, changes=None):
        return cls(
            resizer,
            f"error after successful resize of {resizer}: {exc}",
            changes,
        )


def _call(error_class, resizer, func, changes, *args):
    try:
        return func(*args)
    except error_class as e:
        if e.resizer is None:
            e.resizer = resizer
        e.changes = list(changes)
        raise
    except Exception as e:
        raise error_class.wrap(resizer, e, changes) from e


def _walk_down(log, resizer):
    """Returns [(resizer, state before)] from the top of the chain down to
    its root."""
    levels = []
    seen = set()
    while resizer is not None:
        description = str(resizer)
        if id(resizer) in seen or description in seen:
            raise DependencyResolutionError(
                resizer,
                f"{DependencyResolutionError.stage} failed for {resizer}: "
                "dependency cycle",
            )
        seen.update((id(resizer), description))

        before = _call(StateError, resizer, resizer.state, [])
        levels.append((resizer, before))
        log.debug("resize-level", resizer=description, state=before)
        resizer = _call(
            DependencyResolutionError, resizer, resizer.dependency, []
        )
    return levels


def resize_chain(log, resizer, dry_run=False) -> list[ChangeRecord]:
    """Resizes the dependencies of `resizer` and then `resizer` itself.

    The deepest resizer is grown first, so every layer sees the space its
    dependency just made available. Returns one ChangeRecord per layer
    whose state differs after its resize, dependency first. Running it
    again without the disk growing in between returns no changes.

    Any failure aborts immediately and raises a ResizeError subclass that
    carries the changes confirmed so far. Layers above the failing one are
    not touched.
    """
    levels = _walk_down(log, resizer)
    changes = []
    for resizer, before in reversed(levels):
        _call(ResizeExecutionError, resizer, resizer.resize, changes, dry_run)
        after = _call(PostResizeStateError, resizer, resizer.state, changes)
        if before != after:
            change = ChangeRecord(str(resizer), before, after)
            log.info(
                "resize-level-changed",
                resizer=change.description,
                before=before,
                after=after,
            )
            changes.append(change)
    return changes
