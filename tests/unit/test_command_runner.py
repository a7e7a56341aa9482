"""Tests for the command runner and invocation log."""

import subprocess
from unittest.mock import Mock, patch

import pytest

from devhost.modules.command_runner import (
    COMMAND_NOT_FOUND,
    CommandError,
    CommandResult,
    CommandRunner,
    InvocationLog,
    SudoKeepAlive,
)


def mock_process(returncode=0, stdout=b"", stderr=b""):
    process = Mock()
    process.wait.return_value = None
    process.returncode = returncode
    process.stdout = Mock()
    process.stderr = Mock()
    process.stdout.read.return_value = stdout
    process.stderr.read.return_value = stderr
    return process


# ============================================================================
# CommandResult
# ============================================================================


class TestCommandResult:
    def test_ok(self):
        assert CommandResult(0).ok
        assert not CommandResult(1).ok
        assert not CommandResult(0, timed_out=True).ok

    def test_output_combines_streams(self):
        assert CommandResult(1, "out\n", "err\n").output == "out\nerr"
        assert CommandResult(1, "", "err").output == "err"
        assert CommandResult(0).output == ""


# ============================================================================
# Captured execution
# ============================================================================


class TestRun:
    """CommandRunner.run with subprocess.Popen patched."""

    def test_successful_command(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process(0, b"/opt/homebrew\n")

            result = CommandRunner().run(["brew", "--prefix"])

            assert result.ok
            assert result.stdout == "/opt/homebrew\n"
            assert mock_popen.call_args[0][0] == ["brew", "--prefix"]

    def test_nonzero_exit_is_returned_not_raised(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process(1, stderr=b"no server running")

            result = CommandRunner().run(["tmux", "has-session", "-t", "=dev"])

            assert result.returncode == 1
            assert result.stderr == "no server running"

    def test_command_not_found(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.side_effect = FileNotFoundError("No such file")

            result = CommandRunner().run(["nonexistent-tool"])

            assert result.returncode == COMMAND_NOT_FOUND == 127
            assert "nonexistent-tool" in result.stderr

    def test_permission_error(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.side_effect = PermissionError("denied")

            result = CommandRunner().run(["/etc/hosts"])

            assert result.returncode == 1
            assert "denied" in result.stderr

    def test_timeout_terminates(self):
        with patch("subprocess.Popen") as mock_popen:
            process = mock_process(-15)
            process.wait.side_effect = [subprocess.TimeoutExpired("sleep", 1), None]
            mock_popen.return_value = process

            result = CommandRunner().run(["sleep", "100"], timeout=1)

            assert result.timed_out
            assert not result.ok
            process.terminate.assert_called_once()

    def test_blocks_until_exit_by_default(self):
        with patch("subprocess.Popen") as mock_popen:
            process = mock_process()
            mock_popen.return_value = process

            result = CommandRunner().run(["brew", "install", "--build-from-source", "tmux"])

            assert result.ok
            process.wait.assert_called_once_with(timeout=None)
            process.terminate.assert_not_called()

    def test_default_timeout_applies_when_configured(self):
        with patch("subprocess.Popen") as mock_popen:
            process = mock_process()
            mock_popen.return_value = process

            CommandRunner(default_timeout=45).run(["brew", "update"])

            process.wait.assert_called_once_with(timeout=45)

    def test_privileged_prefix(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process()

            CommandRunner().run(["pmset", "-a", "disablesleep", "1"], privileged=True)

            assert mock_popen.call_args[0][0] == ["sudo", "pmset", "-a", "disablesleep", "1"]

    def test_custom_privilege_wrapper(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process()

            CommandRunner(privilege_wrapper=("sudo", "-n")).run(["true"], privileged=True)

            assert mock_popen.call_args[0][0] == ["sudo", "-n", "true"]

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            CommandRunner().run([])


class TestRunChecked:
    def test_raises_with_result(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process(1, stderr=b"Error: No such formula")

            with pytest.raises(CommandError) as exc_info:
                CommandRunner().run_checked(["brew", "install", "nope"])

            assert "exit 1" in str(exc_info.value)
            assert exc_info.value.output == "Error: No such formula"

    def test_returns_result_on_success(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process(0, b"ok")

            assert CommandRunner().run_checked(["true"]).stdout == "ok"

    def test_error_message_redacts_auth_key(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.return_value = mock_process(1)

            with pytest.raises(CommandError) as exc_info:
                CommandRunner().run_checked(["tailscale", "up", "--authkey=tskey-abc"])

            assert "tskey-abc" not in str(exc_info.value)


class TestRunInteractive:
    def test_returns_exit_code(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0)

            runner = CommandRunner()
            assert runner.run_interactive(["tmux", "attach", "-t", "=dev"]) == 0

            mock_run.assert_called_once_with(["tmux", "attach", "-t", "=dev"], check=False)
            assert runner.log.commands() == ["tmux attach -t =dev"]

    def test_missing_binary(self):
        with patch("subprocess.run", side_effect=FileNotFoundError):
            assert CommandRunner().run_interactive(["tmux", "attach"]) == COMMAND_NOT_FOUND


# ============================================================================
# Invocation log
# ============================================================================


class TestInvocationLog:
    def test_records_in_order(self):
        with patch("subprocess.Popen") as mock_popen:
            mock_popen.side_effect = [mock_process(0), mock_process(1)]
            runner = CommandRunner()

            runner.run(["xcode-select", "--print-path"])
            runner.run(["systemsetup", "-getremotelogin"], privileged=True)

        entries = list(runner.log)
        assert len(runner.log) == 2
        assert entries[0].command == ("xcode-select", "--print-path")
        assert entries[0].privileged is False
        assert entries[1].command == ("sudo", "systemsetup", "-getremotelogin")
        assert entries[1].returncode == 1
        assert entries[1].privileged is True

    def test_redacts_secrets(self):
        log = InvocationLog()
        log.record(["tailscale", "up", "--authkey=tskey-auth-secret"], 0, privileged=True)

        assert log.commands() == ["tailscale up --authkey=[REDACTED]"]

    def test_shared_log(self):
        log = InvocationLog()
        with patch("subprocess.Popen", return_value=mock_process()):
            CommandRunner(log=log).run(["true"])
        assert log.commands() == ["true"]


# ============================================================================
# Sudo keep-alive
# ============================================================================


class TestSudoKeepAlive:
    def test_preauthorises_and_stops(self):
        runner = Mock(spec=CommandRunner)
        runner.run_interactive.return_value = 0

        with SudoKeepAlive(runner, interval=60) as keepalive:
            assert keepalive._thread.is_alive()

        runner.run_interactive.assert_called_once_with(["sudo", "-v"])
        assert not keepalive._thread.is_alive()

    def test_refreshes_timestamp(self):
        runner = Mock(spec=CommandRunner)
        runner.run_interactive.return_value = 0
        runner.run.return_value = CommandResult(1)

        keepalive = SudoKeepAlive(runner, interval=0.01)
        with keepalive:
            keepalive._thread.join(timeout=2)

        runner.run.assert_called_with(["sudo", "-n", "true"], timeout=30)

    def test_failed_preauthorisation_raises(self):
        runner = Mock(spec=CommandRunner)
        runner.run_interactive.return_value = 1

        with pytest.raises(CommandError, match="sudo credentials"):
            with SudoKeepAlive(runner):
                pass
