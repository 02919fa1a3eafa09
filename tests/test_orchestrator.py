import os
import unittest.mock

import pytest

from kubestrap.orchestrate.errors import (ActionFailure, CycleDetected,
                                          StoreUnavailable,
                                          TransientProbeError)
from kubestrap.orchestrate.graph import (Phase, PhaseGraph, PhaseStatus,
                                         ReadinessCheck)
from kubestrap.orchestrate.orchestrator import (INTERRUPTED, Orchestrator,
                                                RunState)
from kubestrap.orchestrate.poller import ConvergencePoller
from kubestrap.orchestrate.state import StateStore


class Action:
    """Records calls and fails the first `failures` times"""

    def __init__(self, name, calls, failures=0, exc=None):
        self.name = name
        self.calls = calls
        self.failures = failures
        self.exc = exc

    def __call__(self, context):
        self.calls.append(self.name)
        if self.exc:
            raise self.exc
        if self.failures:
            self.failures -= 1
            raise ActionFailure(f"{self.name} is flaky")


@pytest.fixture
def calls():
    return []


@pytest.fixture
def store(tmp_path):
    return StateStore(str(tmp_path / "state"))


def linear_graph(calls, **kwargs):
    """a -> b -> c, kwargs maps phase ids to Phase keyword arguments"""
    phases = []
    previous = []
    for pid in "abc":
        opts = dict(kwargs.get(pid, {}))
        action = opts.pop("action", None) or Action(pid, calls)
        phases.append(Phase(pid, action, requires=previous, **opts))
        previous = [pid]
    return PhaseGraph(phases)


def never_ready():
    return False


def test_run_all_phases(calls, store):
    orch = Orchestrator(linear_graph(calls), store, context="ctx")
    report = orch.run()

    assert report.completed
    assert orch.state == RunState.COMPLETED
    assert calls == ["a", "b", "c"]
    assert report.executed == ["a", "b", "c"]
    assert report.describe() == "all phases succeeded (3 executed, 0 skipped)"
    assert all(record.succeeded for record in store.load().values())
    assert all(p.status == PhaseStatus.SUCCEEDED for p in orch.graph)


def test_resume_does_nothing(calls, store):
    Orchestrator(linear_graph(calls), store).run()
    del calls[:]

    report = Orchestrator(linear_graph(calls), store).run()
    assert report.completed
    assert calls == []
    assert report.skipped == ["a", "b", "c"]


def test_force_runs_everything_again(calls, store):
    Orchestrator(linear_graph(calls), store).run()
    del calls[:]

    report = Orchestrator(linear_graph(calls), store).run(force=True)
    assert report.completed
    assert calls == ["a", "b", "c"]


def test_retry_then_success(calls, store):
    graph = linear_graph(calls, a={'action': Action("a", calls, failures=2)})
    report = Orchestrator(graph, store, retries=3).run()

    assert report.completed
    assert calls == ["a", "a", "a", "b", "c"]
    assert store.get("a").attempts == 3
    assert store.get("a").succeeded


def test_retries_exhausted(calls, store):
    graph = linear_graph(calls, b={'action': Action("b", calls, failures=5)})
    report = Orchestrator(graph, store, retries=2).run()

    assert not report.completed
    assert report.state == RunState.ABORTED
    assert calls == ["a", "b", "b"]
    assert report.failed_phase == "b"
    assert report.attempts == 2
    assert report.last_error == "b is flaky"
    assert report.describe() == "phase 'b' failed after 2 attempt(s): " \
        "b is flaky"

    records = store.load()
    assert records["b"].status == PhaseStatus.FAILED
    assert records["b"].error == "b is flaky"
    assert "c" not in records


def test_readiness_timeout_aborts(calls, store):
    check = ReadinessCheck(never_ready, interval=0, max_attempts=4,
                           description="API server")
    graph = linear_graph(calls, b={'readiness': check})
    orch = Orchestrator(graph, store)
    report = orch.run()

    assert report.state == RunState.ABORTED
    assert calls == ["a", "b"]
    assert report.failed_phase == "b"
    assert report.last_error == "API server timed out after 4 attempt(s)"

    records = store.load()
    assert records["a"].succeeded
    assert records["b"].status == PhaseStatus.FAILED
    assert "c" not in records
    assert orch.graph.get("c").status == PhaseStatus.PENDING


def test_readiness_gates_dependents(calls, store):
    answers = iter([TransientProbeError("connection refused"), False, True])

    def api_server():
        answer = next(answers)
        if isinstance(answer, Exception):
            raise answer
        calls.append("probe")
        return answer

    check = ReadinessCheck(api_server, interval=0, max_attempts=5)
    report = Orchestrator(linear_graph(calls, a={'readiness': check}),
                          store).run()

    assert report.completed
    assert calls == ["a", "probe", "probe", "b", "c"]


def test_resume_after_failure(calls, store):
    graph = linear_graph(calls, b={'action': Action("b", calls, failures=1)})
    assert not Orchestrator(graph, store, retries=1).run().completed
    del calls[:]

    report = Orchestrator(linear_graph(calls), store, retries=1).run()
    assert report.completed
    assert report.skipped == ["a"]
    assert calls == ["b", "c"]


def test_failed_phase_is_not_skipped(calls, store):
    store.record_result("a", unittest.mock.Mock(ok=False, reason="old"))
    Orchestrator(linear_graph(calls), store).run()
    assert calls[0] == "a"


def test_bugs_propagate(calls, store):
    graph = linear_graph(calls, a={'action': Action("a", calls,
                                                    exc=KeyError("bug"))})
    with pytest.raises(KeyError):
        Orchestrator(graph, store).run()


def test_keyboard_interrupt(calls, store):
    graph = linear_graph(
        calls, b={'action': Action("b", calls, exc=KeyboardInterrupt())})
    orch = Orchestrator(graph, store)
    report = orch.run()

    assert report.cancelled
    assert report.state == RunState.ABORTED
    assert report.failed_phase == "b"
    assert report.last_error == INTERRUPTED

    record = store.get("b")
    assert record.status == PhaseStatus.FAILED
    assert record.error == INTERRUPTED
    assert store.get("c") is None


def test_cancel_during_readiness(calls, store):
    orch = None

    def cancelling_probe():
        orch.cancel()
        return False

    check = ReadinessCheck(cancelling_probe, interval=1, max_attempts=3)
    orch = Orchestrator(linear_graph(calls, a={'readiness': check}), store)
    report = orch.run()

    assert report.cancelled
    assert calls == ["a"]
    assert store.get("a").error == INTERRUPTED


def test_cancel_during_action(calls, store):
    orch = None

    def cancelling_action(context):
        calls.append("a")
        orch.cancel()

    orch = Orchestrator(linear_graph(calls, a={'action': cancelling_action}),
                        store)
    report = orch.run()

    assert report.cancelled
    assert report.state == RunState.ABORTED
    assert report.failed_phase == "a"
    assert report.attempts == 1
    assert calls == ["a"]

    record = store.get("a")
    assert record.status == PhaseStatus.FAILED
    assert record.error == INTERRUPTED
    assert store.get("b") is None


def test_cancel_before_run(calls, store):
    orch = Orchestrator(linear_graph(calls), store)
    orch.cancel()
    report = orch.run()

    assert report.cancelled
    assert report.failed_phase == "a"
    assert report.attempts == 0
    assert calls == []
    assert store.get("a") is None


def test_invalid_graph(calls, store):
    graph = PhaseGraph([Phase("a", Action("a", calls), requires=["b"]),
                        Phase("b", Action("b", calls), requires=["a"])])
    orch = Orchestrator(graph, store)
    with pytest.raises(CycleDetected):
        orch.run()
    assert orch.state == RunState.ABORTED
    assert calls == []


def test_store_unavailable(calls, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    orch = Orchestrator(linear_graph(calls),
                        StateStore(os.path.join(str(blocker), "state")))

    with pytest.raises(StoreUnavailable):
        orch.run()
    assert orch.state == RunState.ABORTED
    assert calls == []


def test_retry_delay_uses_poller(calls, store):
    poller = unittest.mock.Mock(spec=ConvergencePoller)
    poller.cancelled = False
    graph = linear_graph(calls, a={'action': Action("a", calls, failures=2)})
    Orchestrator(graph, store, poller=poller, retries=3, retry_delay=5).run()

    assert poller.sleep.call_args_list == [unittest.mock.call(5)] * 2


def test_status(calls, store):
    orch = Orchestrator(linear_graph(calls), store)
    store.record_result("a", unittest.mock.Mock(ok=True, reason=None))

    status = orch.status()
    assert [phase.phase_id for phase, _ in status] == ["a", "b", "c"]
    assert status[0][1].succeeded
    assert status[1][1] is None


def test_invalid_retries(store):
    with pytest.raises(ValueError):
        Orchestrator(PhaseGraph(), store, retries=0)
