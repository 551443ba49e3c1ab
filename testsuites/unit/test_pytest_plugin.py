import json
from types import SimpleNamespace

from reliability_tools.flaky_detector import InMemoryHistoryStore, Outcome
from reliability_tools.flaky_detector import flaky_detector as detector_module
from reliability_tools.flaky_detector.pytest_plugin import MAX_ERROR_CHARS, HistoryRecorder


def make_report(outcome="passed", when="call", duration=1.23456, message=None):
    crash = SimpleNamespace(message=message) if message is not None else None
    return SimpleNamespace(
        when=when,
        passed=outcome == "passed",
        skipped=outcome == "skipped",
        failed=outcome == "failed",
        duration=duration,
        longrepr=SimpleNamespace(reprcrash=crash),
        longreprtext=message or "",
    )


class FakeHookOutcome:
    def __init__(self, report):
        self._report = report

    def get_result(self):
        return self._report


def test_build_record_for_passing_test():
    recorder = HistoryRecorder(store=InMemoryHistoryStore())
    item = SimpleNamespace(nodeid="tests/test_login.py::test_login")

    record = recorder.build_record(item, make_report())

    assert record.test_id == "tests/test_login.py::test_login"
    assert record.outcome == Outcome.PASSED
    assert record.duration == 1.235
    assert record.retry_count == 0
    assert record.error is None
    assert record.browser == recorder.browser


def test_build_record_for_rerun_failure_truncates_error():
    recorder = HistoryRecorder(store=InMemoryHistoryStore())
    item = SimpleNamespace(nodeid="tests/test_cart.py::test_add", execution_count=3)

    record = recorder.build_record(item, make_report("failed", message="E" * 5000))

    assert record.outcome == Outcome.FAILED
    assert record.retry_count == 2
    assert len(record.error) == MAX_ERROR_CHARS


def test_hook_records_call_phase_and_failed_setup_only():
    store = InMemoryHistoryStore()
    recorder = HistoryRecorder(store=store)
    item = SimpleNamespace(nodeid="t")

    for report in (
        make_report(when="setup"),
        make_report(when="call"),
        make_report(when="teardown"),
        make_report("failed", when="setup", message="fixture error"),
    ):
        hook = recorder.pytest_runtest_makereport(item, None)
        next(hook)
        try:
            hook.send(FakeHookOutcome(report))
        except StopIteration:
            pass

    outcomes = [r.outcome for r in store.read_records()]
    assert outcomes == [Outcome.PASSED, Outcome.FAILED]


def test_session_end_report_is_written_without_allure_attachment(tmp_path, monkeypatch):
    attached = []
    monkeypatch.setattr(detector_module, "attach_flakiness_reports", attached.append)
    store = InMemoryHistoryStore()
    recorder = HistoryRecorder(store=store, report_path=tmp_path / "flaky-test-report.json")
    item = SimpleNamespace(nodeid="tests/test_cart.py::test_add")
    recorder.detector.record_outcome(recorder.build_record(item, make_report("failed", message="boom")))

    recorder.pytest_sessionfinish(session=None, exitstatus=1)

    data = json.loads((tmp_path / "flaky-test-report.json").read_text(encoding="utf-8"))
    assert data["totalTests"] == 1
    assert attached == []
