import json
import subprocess
from subprocess import PIPE

import structlog

log = structlog.get_logger()

## runner utils

LVM_QUERY_OPTIONS = ("--reportformat", "json", "--units", "b", "--nosuffix")


class JSONRunner(object):
    """Create simplified calls for tools that provide JSON CLIs.

    The idea here is that you can call "run.json.foobar" and
    a) the tool is automatically invoked in a way that it outputs
    JSON and b) that the JSON output is automatically returned
    in a Python structure and c) maybe even massaged a bit for
    usability for the caller.

    """

    def __init__(self, runner):
        self.runner = runner

    def __run__(self, name, *args, **kw):
        result = getattr(self.runner, name)(*args, **kw)
        result = json.loads(result)
        return result

    # Tool-specific overrides to ensure that the invoked tools return JSON and
    # to massage their output for usability.

    def sfdisk(self, *args, **kw):
        return self.__run__("sfdisk", "--json", *args, **kw)["partitiontable"]

    def pvs(self, *args, **kw):
        result = self.__run__("pvs", *(LVM_QUERY_OPTIONS + args), **kw)
        return result["report"][0]["pv"]

    def vgs(self, *args, **kw):
        result = self.__run__("vgs", *(LVM_QUERY_OPTIONS + args), **kw)
        return result["report"][0]["vg"]

    def lvs(self, *args, **kw):
        result = self.__run__("lvs", *(LVM_QUERY_OPTIONS + args), **kw)
        return result["report"][0]["lv"]


class Runner(object):
    """Runs external tools as `run.<tool>(*args)` and returns their stdout.

    Calls block until the tool exits. There is no timeout.
    """

    def __init__(
        self,
        default_options=dict(check=True, stdout=PIPE, stderr=PIPE, text=True),
    ):
        self.default_options = default_options

        self.json = JSONRunner(self)

    def __getattr__(self, name):
        def callable(*args, **kw):
            args = tuple(str(a) for a in args)
            options = self.default_options.copy()
            options.update(kw)

            log.debug("run-cmd", cmd=" ".join((name,) + args))

            check = options["check"]
            options["check"] = True

            try:
                return subprocess.run((name,) + args, **options).stdout
            except subprocess.CalledProcessError as e:
                log.error(
                    "run-failed",
                    cmd=" ".join((name,) + args),
                    returncode=e.returncode,
                    stdout=e.stdout,
                    stderr=e.stderr,
                )
                if check:
                    raise

        return callable


run = Runner()
