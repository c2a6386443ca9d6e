import unittest.mock
from subprocess import CalledProcessError, CompletedProcess

import embiggen.systemd
import pytest
from embiggen.systemd import install_unit, restart_units, unit_file_content


def test_unit_file_content():
    assert unit_file_content("/root/go/bin/embiggen-disk") == (
        "[Unit]\n"
        "Description=embiggen-disk\n"
        "\n"
        "[Service]\n"
        "ExecStart=/root/go/bin/embiggen-disk --verbose --daemon /\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target"
    )


@unittest.mock.patch("shutil.which")
def test_unit_file_content_uses_installed_executable(which):
    which.return_value = "/opt/venv/bin/embiggen-disk"
    assert (
        "ExecStart=/opt/venv/bin/embiggen-disk --verbose --daemon /"
        in unit_file_content()
    )
    which.return_value = None
    assert (
        f"ExecStart={embiggen.systemd.DEFAULT_EXECUTABLE} --verbose"
        in unit_file_content()
    )


def completed(cmd, returncode=0, stdout="", stderr=""):
    return CompletedProcess(cmd, returncode, stdout, stderr)


@unittest.mock.patch("subprocess.run")
def test_install_unit(run, logger, log, tmp_path):
    unit_path = tmp_path / "embiggen-disk.service"
    run.side_effect = lambda cmd, **kw: completed(
        cmd, stdout="Active: active (running)" if "status" in cmd else ""
    )

    status = install_unit(logger, unit_path, "/usr/bin/embiggen-disk")

    assert unit_path.read_text() == unit_file_content("/usr/bin/embiggen-disk")
    assert [c.args[0] for c in run.call_args_list] == [
        ["systemctl", "daemon-reload"],
        ["systemctl", "enable", "embiggen-disk.service"],
        ["systemctl", "start", "embiggen-disk.service"],
        ["systemctl", "status", "embiggen-disk.service"],
    ]
    assert status == "Active: active (running)"
    assert log.has("install-unit-written", unit_path=str(unit_path))
    assert log.has("install-unit-started")


@unittest.mock.patch("subprocess.run")
def test_install_unit_start_failure_raises(run, logger, tmp_path):
    def systemctl(cmd, check, **kw):
        if "start" in cmd:
            raise CalledProcessError(1, cmd, "", "Job failed")
        return completed(cmd)

    run.side_effect = systemctl
    with pytest.raises(CalledProcessError):
        install_unit(logger, tmp_path / "embiggen-disk.service", "/bin/x")
    assert run.call_count == 3


@unittest.mock.patch("subprocess.run")
def test_install_unit_status_failure_is_logged(run, logger, log, tmp_path):
    run.side_effect = lambda cmd, **kw: completed(
        cmd,
        returncode=3 if "status" in cmd else 0,
        stdout="Active: failed",
    )
    status = install_unit(logger, tmp_path / "embiggen-disk.service", "/bin/x")
    assert status == "Active: failed"
    assert log.has("install-unit-status-failed", returncode=3)


@unittest.mock.patch("subprocess.run")
def test_restart_units(run, logger, log):
    run.side_effect = lambda cmd, **kw: completed(cmd)
    restart_units(logger, ("kubelet.service", "docker.service"))
    run.assert_any_call(
        ["systemctl", "restart", "kubelet.service"],
        check=True,
        text=True,
        capture_output=True,
    )
    assert log.has("restart-unit", unit="kubelet.service")
    assert log.has("restart-unit", unit="docker.service")


@unittest.mock.patch("subprocess.run")
def test_restart_units_failure_does_not_raise(run, logger, log):
    def systemctl(cmd, **kw):
        if "kubelet.service" in cmd:
            raise CalledProcessError(
                5, cmd, "", "Unit kubelet.service not found."
            )
        return completed(cmd)

    run.side_effect = systemctl
    restart_units(logger, ("kubelet.service", "docker.service"))
    assert log.has(
        "restart-unit-failed",
        unit="kubelet.service",
        stderr="Unit kubelet.service not found.",
    )
    assert log.has("restart-unit", unit="docker.service")


@unittest.mock.patch("subprocess.run")
def test_restart_units_systemctl_missing(run, logger, log):
    run.side_effect = FileNotFoundError(2, "No such file", "systemctl")
    restart_units(logger, ("kubelet.service",))
    assert log.has("restart-unit-failed", unit="kubelet.service", stderr=None)


@unittest.mock.patch("subprocess.run")
def test_restart_units_dry_run(run, logger, log):
    restart_units(logger, ("kubelet.service",), dry_run=True)
    run.assert_not_called()
    assert log.has("restart-unit-dry-run", unit="kubelet.service")


@unittest.mock.patch("subprocess.run")
def test_restart_units_nothing_configured(run, logger, log):
    restart_units(logger, ())
    run.assert_not_called()
    assert log.events == []
