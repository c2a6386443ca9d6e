"""Structured logging for embiggen-disk.

Each event is rendered separately for every output: the console, the
optional log file given by `--logdir` and the systemd journal if the
`systemd` Python package is available. Event names are kebab-case, values
are passed as keyword arguments. A `_replace_msg` template replaces the
key=value listing in the human-readable message:

    log.info(
        "filesystem-grow",
        _replace_msg="Growing {fstype} filesystem at {mount_point}",
        fstype="ext4",
        mount_point="/",
    )
"""

import json
import os
import string
import sys
import syslog

import colorama
import structlog
from structlog.processors import CallsiteParameter, CallsiteParameterAdder

try:
    from systemd import journal
except ImportError:
    journal = None

_initialized = False

EVENT_WIDTH = 30

LEVELS = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
    "critical": 50,
}

LEVEL_STYLES = {
    "debug": colorama.Fore.GREEN,
    "info": colorama.Fore.GREEN + colorama.Style.BRIGHT,
    "warning": colorama.Fore.YELLOW + colorama.Style.BRIGHT,
    "error": colorama.Fore.RED + colorama.Style.BRIGHT,
    "critical": colorama.Back.RED + colorama.Style.BRIGHT,
}

JOURNAL_PRIORITIES = {
    "debug": syslog.LOG_DEBUG,
    "info": syslog.LOG_INFO,
    "warning": syslog.LOG_WARNING,
    "error": syslog.LOG_ERR,
    "critical": syslog.LOG_CRIT,
}

# Command output and tracebacks, shown as indented blocks below the event
# instead of inline.
BLOCK_KEYS = {"stdout": "out", "stderr": "err", "exception": "exc"}

CALLSITE_PARAMETERS = [
    CallsiteParameter.PATHNAME,
    CallsiteParameter.MODULE,
    CallsiteParameter.FUNC_NAME,
    CallsiteParameter.LINENO,
]
CALLSITE_KEYS = tuple(p.value for p in CALLSITE_PARAMETERS)


class MessageTemplate(string.Formatter):
    """Fills in `_replace_msg`. Unknown fields show up as <missing>."""

    def get_value(self, key, args, kwargs):
        if isinstance(key, str):
            return kwargs.get(key, "<missing>")
        return super().get_value(key, args, kwargs)


def replace_msg(event_dict):
    template = event_dict.pop("_replace_msg", None)
    if template is None:
        return None
    return MessageTemplate().format(template, **event_dict)


class TextRenderer:
    """One line per event: time, level letter, event name and message.

    Events below `min_level` are dropped by returning None.
    """

    def __init__(self, min_level="info", colors=False, show_caller_info=False):
        self.min_level = LEVELS[min_level]
        self.colors = colors
        self.show_caller_info = show_caller_info

    def style(self, text, style):
        if not self.colors:
            return text
        return style + text + colorama.Style.RESET_ALL

    def __call__(self, logger, method_name, event_dict):
        event_dict = dict(event_dict)
        message = replace_msg(event_dict)
        level = event_dict.pop("level", "info")
        if LEVELS.get(level, 0) < self.min_level:
            return None

        timestamp = event_dict.pop("timestamp", None)
        event = event_dict.pop("event")
        callsite = {k: event_dict.pop(k, None) for k in CALLSITE_KEYS}
        blocks = [
            (label, event_dict.pop(key))
            for key, label in BLOCK_KEYS.items()
            if event_dict.get(key)
        ]
        if message is None:
            message = " ".join(
                self.style(key, colorama.Fore.CYAN)
                + "="
                + self.style(repr(value), colorama.Fore.MAGENTA)
                for key, value in sorted(event_dict.items())
                if key not in BLOCK_KEYS
            )

        line = [
            self.style(level[0].upper(), LEVEL_STYLES.get(level, "")),
            self.style(event.ljust(EVENT_WIDTH), colorama.Style.BRIGHT),
            message,
        ]
        if timestamp:
            line.insert(0, self.style(timestamp, colorama.Style.DIM))
        if self.show_caller_info and callsite["module"]:
            line.append(
                self.style(
                    "[{module}:{func_name}:{lineno}]".format(**callsite),
                    colorama.Style.DIM,
                )
            )
        lines = [" ".join(line).rstrip()]
        for label, text in blocks:
            lines.extend(
                f"    {label}> {block_line}"
                for block_line in str(text).rstrip("\n").splitlines()
            )
        return "\n".join(lines)


class JournalRenderer:
    """Turns an event into journal fields.

    MESSAGE holds the event name and the human-readable message, the other
    keys become upper-case fields. Non-string values are JSON encoded, so
    `journalctl DRY_RUN=true` works.
    """

    def __init__(self, syslog_identifier, syslog_facility=syslog.LOG_LOCAL1):
        self.syslog_identifier = syslog_identifier
        self.syslog_facility = syslog_facility

    @staticmethod
    def encode(value):
        if isinstance(value, str):
            return value
        return json.dumps(value, default=repr)

    def __call__(self, logger, method_name, event_dict):
        event_dict = dict(event_dict)
        message = replace_msg(event_dict)
        event_dict.pop("timestamp", None)
        callsite = {k: event_dict.pop(k, None) for k in CALLSITE_KEYS}
        if message is None:
            message = " ".join(
                f"{key}={value!r}"
                for key, value in sorted(event_dict.items())
                if key not in ("event", "level") and key not in BLOCK_KEYS
            )

        fields = {k.upper(): self.encode(v) for k, v in event_dict.items()}
        event = event_dict["event"]
        fields.update(
            MESSAGE=f"{event}: {message}" if message else event,
            PRIORITY=JOURNAL_PRIORITIES.get(
                event_dict.get("level"), syslog.LOG_INFO
            ),
            SYSLOG_IDENTIFIER=self.syslog_identifier,
            SYSLOG_FACILITY=self.syslog_facility,
        )
        if callsite["lineno"] is not None:
            fields.update(
                CODE_FILE=callsite["pathname"],
                CODE_FUNC=callsite["func_name"],
                CODE_LINE=callsite["lineno"],
            )
        return fields


class RenderPerOutput:
    """Renders the event once for each output, keyed by output name."""

    def __init__(self, **renderers):
        self.renderers = renderers

    def __call__(self, logger, method_name, event_dict):
        return {
            name: render(logger, method_name, event_dict)
            for name, render in self.renderers.items()
        }


class OutputLogger:
    """Passes what `RenderPerOutput` produced to the matching writer.

    Outputs for which the renderer returned nothing are skipped.
    """

    def __init__(self, writers):
        self.writers = writers

    def msg(self, **rendered):
        for name, write in self.writers.items():
            message = rendered.get(name)
            if not message:
                continue
            try:
                write(message)
            except Exception:
                # A full disk or closed log file must not stop the resize.
                pass

    debug = info = warning = warn = error = critical = exception = msg


def log_outputs(
    verbose, main_log_file=None, syslog_identifier="embiggen-disk"
):
    """Returns a (renderer, writer) pair for each output name."""
    outputs = {}
    # Console output of a service ends up in the journal, too.
    if not (journal and os.environ.get("JOURNAL_STREAM")):
        outputs["console"] = (
            TextRenderer(
                min_level="debug" if verbose else "info",
                colors=sys.stdout.isatty(),
                show_caller_info=verbose,
            ),
            structlog.PrintLogger(sys.stdout).msg,
        )
    if main_log_file:
        outputs["file"] = (
            TextRenderer(min_level="debug", show_caller_info=True),
            structlog.PrintLogger(main_log_file).msg,
        )
    if journal:
        outputs["journal"] = (
            JournalRenderer(syslog_identifier),
            lambda fields: journal.send(**fields),
        )
    return outputs


def logging_initialized():
    return _initialized


def init_logging(
    verbose, main_log_file=None, syslog_identifier="embiggen-disk"
):
    global _initialized

    outputs = log_outputs(verbose, main_log_file, syslog_identifier)
    renderers = {name: renderer for name, (renderer, _) in outputs.items()}
    writers = {name: writer for name, (_, writer) in outputs.items()}

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False),
            structlog.processors.format_exc_info,
            CallsiteParameterAdder(CALLSITE_PARAMETERS),
            RenderPerOutput(**renderers),
        ],
        wrapper_class=structlog.BoundLogger,
        logger_factory=lambda *args: OutputLogger(writers),
        cache_logger_on_first_use=False,
    )
    _initialized = True
