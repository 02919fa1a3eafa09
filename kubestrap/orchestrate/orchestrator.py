"""
Orchestrator
============

Drive the phases of a :class:`PhaseGraph` to completion.

The orchestrator walks the graph in topological order. Phases recorded as
Succeeded in the :class:`StateStore` are skipped, all others are executed,
retried on failure and gated by their readiness check. The first phase which
fails for good aborts the run; phases depending on it are never attempted.
An aborted run can be resumed after manual remediation, already succeeded
phases are not executed again.
"""
import enum

from kubestrap.util.logger import Logger

from .errors import GraphError, RunCancelled, StoreUnavailable
from .executor import Outcome, PhaseExecutor
from .graph import PhaseStatus
from .poller import ConvergencePoller

LOGGER = Logger(__name__)

INTERRUPTED = "interrupted"


class RunState(enum.Enum):
    """The global state of a run"""
    INITIALIZING = "Initializing"
    EXECUTING = "Executing"
    COMPLETED = "Completed"
    ABORTED = "Aborted"


class RunReport:  # pylint: disable=too-few-public-methods
    """What happened during :meth:`Orchestrator.run`.

    Attributes:
        state (RunState): COMPLETED or ABORTED once the run finished.
        executed (list): phases executed by this run.
        skipped (list): phases already Succeeded in an earlier run.
        failed_phase (str): the phase that aborted the run.
        last_error (str): the last error of the failed phase.
        attempts (int): the number of action attempts of the failed phase.
        cancelled (bool): True if the run was interrupted.
    """

    def __init__(self):
        self.state = RunState.INITIALIZING
        self.executed = []
        self.skipped = []
        self.failed_phase = None
        self.last_error = None
        self.attempts = 0
        self.cancelled = False

    @property
    def completed(self):
        """True if all phases succeeded"""
        return self.state == RunState.COMPLETED

    def describe(self):
        """A summary for the operator"""
        if self.completed:
            return "all phases succeeded (%d executed, %d skipped)" % (
                len(self.executed), len(self.skipped))

        return "phase '%s' failed after %d attempt(s): %s" % (
            self.failed_phase, self.attempts, self.last_error)

    def __repr__(self):
        return f"<RunReport {self.state.value}>"


class Orchestrator:  # pylint: disable=too-many-instance-attributes
    """Run a bootstrap described by a :class:`PhaseGraph`.

    Args:
        graph (PhaseGraph): the phases to run.
        store (StateStore): where phase results are persisted.
        executor (PhaseExecutor): runs single phase actions.
        poller (ConvergencePoller): waits for readiness checks.
        retries (int): the number of attempts per action, at least 1.
        retry_delay (float): seconds between two attempts.
        context: handed to every phase action.
    """

    # pylint: disable=too-many-arguments
    def __init__(self, graph, store, executor=None, poller=None, retries=3,
                 retry_delay=0, context=None):
        if retries < 1:
            raise ValueError("retries must be at least 1")

        self.graph = graph
        self.store = store
        self.executor = executor or PhaseExecutor()
        self.poller = poller or ConvergencePoller()
        self.retries = retries
        self.retry_delay = retry_delay
        self.context = context
        self.state = RunState.INITIALIZING

    def cancel(self):
        """Abort the run at the next possible point.

        A wait in progress returns immediately. The phase in flight is
        recorded as Failed.
        """
        LOGGER.warning("Cancelling bootstrap ...")
        self.poller.cancel()

    def status(self):
        """Return ``[(phase, record or None), ...]`` in execution order"""
        self.graph.validate()
        records = self.store.load()
        return [(self.graph.get(phase_id), records.get(phase_id))
                for phase_id in self.graph.topological_order()]

    def _initialize(self):
        self.state = RunState.INITIALIZING
        try:
            records = self.store.load()
            self.graph.validate()
        except (GraphError, StoreUnavailable):
            self.state = RunState.ABORTED
            raise

        for phase in self.graph:
            phase.status = PhaseStatus.PENDING
        return records

    def run(self, force=False):
        """Run all phases which did not succeed yet.

        Args:
            force (bool): execute phases even if they already succeeded.

        Returns:
            :class:`RunReport`

        Raises:
            GraphError if the graph is malformed.
            StoreUnavailable if the state can't be read or written.
        """
        report = RunReport()
        records = self._initialize()

        self.state = report.state = RunState.EXECUTING
        for phase_id in self.graph.topological_order():
            phase = self.graph.get(phase_id)
            record = records.get(phase_id)

            if record and record.succeeded and not force:
                LOGGER.info("Skipping %s, already succeeded at %s", phase_id,
                            record.timestamp)
                phase.status = PhaseStatus.SUCCEEDED
                report.skipped.append(phase_id)
                continue

            try:
                ok = self._run_phase(phase, report)
            except (RunCancelled, KeyboardInterrupt):
                self._interrupted(phase, report)
                break
            except StoreUnavailable:
                self.state = report.state = RunState.ABORTED
                raise

            if not ok:
                break
        else:
            self.state = report.state = RunState.COMPLETED
            LOGGER.success("Bootstrap completed: %s", report.describe())
            return report

        self.state = report.state = RunState.ABORTED
        LOGGER.error("Bootstrap aborted: %s", report.describe())
        return report

    def _run_phase(self, phase, report):
        """Execute, retry and gate a single phase.

        Returns:
            True if the phase succeeded.
        """
        blocking = [req.phase_id for req in
                    self.graph.prerequisites(phase.phase_id)
                    if req.status != PhaseStatus.SUCCEEDED]
        if blocking:
            raise RuntimeError("%s started before %s" % (
                phase.phase_id, ", ".join(blocking)))

        if self.poller.cancelled:
            raise RunCancelled(f"cancelled before {phase.phase_id}")

        LOGGER.info("Running phase %s ...", phase.phase_id)
        phase.status = PhaseStatus.RUNNING
        report.executed.append(phase.phase_id)
        report.attempts = 0
        self.store.record_start(phase.phase_id)

        outcome = None
        for attempt in range(1, self.retries + 1):
            report.attempts = attempt
            outcome = self.executor.execute(phase, self.context)
            if outcome.ok:
                break

            LOGGER.warning("Phase %s failed (attempt %d/%d): %s",
                           phase.phase_id, attempt, self.retries,
                           outcome.reason)
            if attempt < self.retries:
                self.poller.sleep(self.retry_delay)

        if self.poller.cancelled:
            raise RunCancelled(f"cancelled during {phase.phase_id}")

        if outcome.ok and phase.readiness:
            result = self.poller.wait(phase.readiness)
            if not result.ready:
                outcome = Outcome.failure("%s %s" % (
                    phase.readiness.description, result.describe()))

        self.store.record_result(phase.phase_id, outcome, report.attempts)

        if not outcome.ok:
            phase.status = PhaseStatus.FAILED
            report.failed_phase = phase.phase_id
            report.last_error = outcome.reason
            return False

        phase.status = PhaseStatus.SUCCEEDED
        LOGGER.success("Phase %s succeeded", phase.phase_id)
        return True

    def _interrupted(self, phase, report):
        report.cancelled = True
        report.failed_phase = phase.phase_id
        report.last_error = INTERRUPTED
        if phase.status != PhaseStatus.RUNNING:
            report.attempts = 0
            return

        phase.status = PhaseStatus.FAILED
        self.store.record_result(phase.phase_id,
                                 Outcome.failure(INTERRUPTED),
                                 report.attempts)
