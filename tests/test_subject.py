"""
Tests for the process supervisor against real child processes.
"""

import signal
import sys

import pytest

from migration_harness.core.exceptions import StartupTimeout
from migration_harness.services.subject import ProcessState, ProcessSupervisor

READY_SUBJECT = """
import os, sys, time
print("loading config", flush=True)
print("ZO_LOCAL_MODE=" + os.environ.get("ZO_LOCAL_MODE", ""), flush=True)
time.sleep(0.2)
print("INFO Starting HTTP server at: 0.0.0.0:5080", flush=True)
time.sleep(30)
"""

SILENT_SUBJECT = """
import time
print("booting", flush=True)
time.sleep(30)
"""

CRASHING_SUBJECT = """
import sys
print("panic: could not connect to metadata store", flush=True)
sys.exit(3)
"""

STUBBORN_SUBJECT = """
import signal, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
print("Starting HTTP server", flush=True)
time.sleep(30)
"""


class TestProcessSupervisor:
    def test_start_wait_ready_stop(self, harness_config, cleanup, write_script, tmp_path):
        """Full lifecycle: starting -> ready -> terminated."""
        harness_config.subject_command = write_script("subject.py", READY_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)

        handle = supervisor.start({"ZO_LOCAL_MODE": "true"}, tmp_path / "init.log")
        assert handle.state == ProcessState.STARTING
        assert handle.pid is not None
        assert handle.started_at is not None

        supervisor.wait_ready(handle)
        assert handle.state == ProcessState.READY

        supervisor.stop(handle)
        assert handle.state == ProcessState.TERMINATED
        assert not handle.alive
        assert "ZO_LOCAL_MODE=true" in (tmp_path / "init.log").read_text()

    def test_start_registers_stop_and_log_removal(self, harness_config, cleanup, write_script, tmp_path):
        harness_config.subject_command = write_script("subject.py", SILENT_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)

        handle = supervisor.start({}, tmp_path / "init.log")
        assert len(cleanup) == 2

        cleanup.run_all()

        assert handle.state == ProcessState.TERMINATED
        assert not handle.alive
        assert not (tmp_path / "init.log").exists()

    def test_timeout_attaches_full_log(self, harness_config, cleanup, write_script, tmp_path):
        """Missing marker is definitive: timed_out state and full log dump."""
        harness_config.subject_command = write_script("subject.py", SILENT_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)
        handle = supervisor.start({}, tmp_path / "init.log")

        with pytest.raises(StartupTimeout) as exc_info:
            supervisor.wait_ready(handle, max_wait=0.5)

        assert handle.state == ProcessState.TIMED_OUT
        assert "booting" in exc_info.value.details["log"]
        assert "Full subject log" in exc_info.value.diagnostics()

    def test_subject_exiting_early_fails_fast(self, harness_config, cleanup, write_script, tmp_path):
        harness_config.subject_command = write_script("subject.py", CRASHING_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)
        handle = supervisor.start({}, tmp_path / "init.log")

        with pytest.raises(StartupTimeout) as exc_info:
            supervisor.wait_ready(handle, max_wait=10)

        assert handle.state == ProcessState.TERMINATED
        assert exc_info.value.details["exit_code"] == 3
        assert "panic" in exc_info.value.details["log"]

    def test_custom_marker(self, harness_config, cleanup, write_script, tmp_path):
        harness_config.subject_command = write_script("subject.py", SILENT_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)
        handle = supervisor.start({}, tmp_path / "init.log")

        supervisor.wait_ready(handle, marker="booting", max_wait=5)

        assert handle.state == ProcessState.READY

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signals")
    def test_stop_escalates_to_kill(self, harness_config, cleanup, write_script, tmp_path):
        """A subject ignoring SIGTERM is killed after the grace period."""
        harness_config.subject_command = write_script("subject.py", STUBBORN_SUBJECT)
        harness_config.stop_grace_period = 0.5
        supervisor = ProcessSupervisor(harness_config, cleanup)
        handle = supervisor.start({}, tmp_path / "init.log")
        supervisor.wait_ready(handle)

        supervisor.stop(handle)

        assert handle.state == ProcessState.TERMINATED
        assert handle.exit_code == -signal.SIGKILL

    def test_stop_tolerates_exited_process(self, harness_config, cleanup, write_script, tmp_path):
        harness_config.subject_command = write_script("subject.py", CRASHING_SUBJECT)
        supervisor = ProcessSupervisor(harness_config, cleanup)
        handle = supervisor.start({}, tmp_path / "init.log")
        handle.proc.wait(timeout=10)

        supervisor.stop(handle)
        supervisor.stop(handle)

        assert handle.state == ProcessState.TERMINATED
        assert handle.exit_code == 3

    def test_missing_binary_raises(self, harness_config, cleanup, tmp_path):
        harness_config.subject_command = [str(tmp_path / "target" / "debug" / "openobserve")]
        supervisor = ProcessSupervisor(harness_config, cleanup)

        with pytest.raises(StartupTimeout, match="Could not launch subject"):
            supervisor.start({}, tmp_path / "init.log")
