"""The resize loop.

Every tick resolves a fresh resizer chain for the configured mount point
and resizes it. Errors are fatal: they propagate out of `Daemon.run()` and
the process is expected to exit and be restarted by its supervisor. As
resizing is idempotent, the next run picks up where the failed one left
off.
"""

import threading

import embiggen.chain
import embiggen.systemd
from embiggen.resizer import ResizeError, resize_chain


class Daemon:
    def __init__(
        self,
        log,
        config,
        resolve_chain=embiggen.chain.resolve_chain,
        restart=embiggen.systemd.restart_units,
    ):
        self.log = log.bind(mount_point=config.mount_point)
        self.config = config
        self.resolve_chain = resolve_chain
        self.restart = restart
        self.stopped = threading.Event()

    def tick(self):
        """Resizes the chain once. Returns the list of changes."""
        try:
            resizer = self.resolve_chain(self.log, self.config.mount_point)
        except Exception:
            self.log.error(
                "daemon-resolve-failed",
                _replace_msg="Error preparing to enlarge {mount_point}",
                exc_info=True,
            )
            raise

        self.log.debug("daemon-chain", resizer=repr(resizer))
        try:
            changes = resize_chain(self.log, resizer, self.config.dry_run)
        except ResizeError as e:
            self.report(e.changes, failed=True)
            self.log.error(
                "daemon-resize-failed",
                _replace_msg="Error: {error}",
                error=str(e),
                stage=e.stage,
                failed_resizer=str(e.resizer),
                exc_info=self.config.verbose,
            )
            raise
        self.report(changes)
        return changes

    def report(self, changes, failed=False):
        if changes:
            self.log.info(
                "daemon-changes",
                _replace_msg="Changes made:",
                count=len(changes),
            )
            for change in changes:
                self.log.info(
                    "daemon-change",
                    _replace_msg="  * {change}",
                    change=str(change),
                )
            self.restart(
                self.log, self.config.restart_units, self.config.dry_run
            )
        elif not failed:
            self.log.info("daemon-no-changes", _replace_msg="No changes made.")

    def run(self):
        """Runs one tick right away, or ticks every `config.interval`
        seconds in daemon mode until `stop()` is called."""
        if not self.config.daemon:
            self.tick()
            return

        self.log.info("daemon-start", interval=self.config.interval)
        while not self.stopped.wait(self.config.interval):
            self.tick()
        self.log.info("daemon-stopped")

    def stop(self):
        self.stopped.set()
