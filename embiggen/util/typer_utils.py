import os
import sys
from functools import wraps

import embiggen.util.logging
import rich
import structlog
import typer

# EX_NOPERM from sysexits.h
EXIT_NOT_ROOT = 77


class EmbiggenTyperApp(typer.Typer):
    """Typer app which puts exceptions escaping the command into the log.

    Typer still prints them afterwards. In daemon mode, the log is the
    journal, so the traceback ends up next to the last resize attempt.
    """

    def __init__(self, command_name):
        # Local variables of resizers aren't helpful in tracebacks.
        super().__init__(pretty_exceptions_show_locals=False)
        self.command_name = command_name

    def __call__(self, *args, **kwargs):
        try:
            return super().__call__(*args, **kwargs)
        except Exception:
            if embiggen.util.logging.logging_initialized():
                structlog.get_logger().error(
                    "unhandled-exception",
                    command=self.command_name,
                    exc_info=True,
                )
            raise


def requires_root(func):
    @wraps(func)
    def as_root(*args, **kwargs):
        if os.geteuid() != 0:
            rich.print(
                "[bold red]Error:[/bold red] This must be run as root.",
                file=sys.stderr,
            )
            raise typer.Exit(EXIT_NOT_ROOT)
        return func(*args, **kwargs)

    return as_root
