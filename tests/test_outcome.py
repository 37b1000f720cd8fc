import pytest

from scanners.av.engine import ScanInvocation
from scanners.av.outcome import Clean, Failure, Infected, ScanOutcome, interpret


def _inv(exit_code, stdout="", stderr="", error=None):
    return ScanInvocation(command_line="clamscan", exit_code=exit_code, stdout=stdout, stderr=stderr, error=error)


def test_exit_zero_without_output_is_clean_with_default_message():
    assert interpret(_inv(0)) == Clean(raw_output="File is clean - no threats detected")


def test_exit_zero_passes_stdout_through():
    assert interpret(_inv(0, stdout="odd but harmless\n")) == Clean(raw_output="odd but harmless\n")


def test_exit_one_is_a_verdict_not_an_error():
    out = interpret(_inv(1, stdout="b.exe: Eicar-Test-Signature FOUND", stderr="noise"))
    assert out == Infected(raw_output="b.exe: Eicar-Test-Signature FOUND")


def test_exit_one_without_output():
    assert interpret(_inv(1)) == Infected(raw_output="Virus detected")


@pytest.mark.parametrize("code", [2, 40, 50, 62, -9])
def test_other_exit_codes_fail_with_stderr(code):
    out = interpret(_inv(code, stdout="ignored", stderr="ERROR: Can't access database directory"))
    assert out == Failure(message="Scan failed", details="ERROR: Can't access database directory")


def test_failure_falls_back_to_error_message():
    out = interpret(_inv(None, error="Command failed: [Errno 2] No such file or directory: 'clamscan'"))
    assert isinstance(out, Failure)
    assert out.details == "Command failed: [Errno 2] No such file or directory: 'clamscan'"


def test_failure_without_any_diagnostics():
    assert interpret(_inv(2)) == Failure(message="Scan failed", details="Unknown error")


@pytest.mark.parametrize("code", [0, 1, 2, None])
def test_every_verdict_is_a_scan_outcome(code):
    assert isinstance(interpret(_inv(code)), ScanOutcome)
