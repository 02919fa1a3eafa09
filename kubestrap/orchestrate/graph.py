"""
Graph
=====

Declare the bootstrap phases and the order in which they have to run.

A :class:`Phase` is a named unit of work with a list of prerequisites.
The :class:`PhaseGraph` holds all phases of a bootstrap and computes the
execution order used by :class:`kubestrap.orchestrate.orchestrator.Orchestrator`.

Example:
    >>> graph = PhaseGraph()
    >>> graph.add_phase(Phase("system-prep", prepare))
    >>> graph.add_phase(Phase("container-runtime", containerd,
    ...                       requires=["system-prep"]))
    >>> graph.topological_order()
    ['system-prep', 'container-runtime']
"""
import enum

from .errors import CycleDetected, DuplicateIdentifier, UnknownPrerequisite


class PhaseStatus(enum.Enum):
    """The state of a single phase"""
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"

    @property
    def is_terminal(self):
        """True if the phase finished, successfully or not"""
        return self in (PhaseStatus.SUCCEEDED, PhaseStatus.FAILED)


class ReadinessCheck:  # pylint: disable=too-few-public-methods,too-many-arguments
    """A predicate gating the progression to dependent phases.

    Args:
        predicate (callable): called without arguments, returns True once
            the external system converged. May raise
            :class:`kubestrap.orchestrate.errors.TransientProbeError`.
        interval (float): seconds to wait between two attempts.
        max_attempts (int): the maximum number of times the predicate is
            called.
        timeout (float): optional upper bound for the whole wait in seconds.
        backoff (float): multiplier applied to the interval after each
            attempt, 1 keeps the interval fixed.
        description (str): what is awaited, used for logging.
    """

    def __init__(self, predicate, interval=5, max_attempts=10, timeout=None,
                 backoff=1, description=""):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if interval < 0:
            raise ValueError("interval can't be negative")
        if backoff < 1:
            raise ValueError("backoff must be at least 1")

        self.predicate = predicate
        self.interval = interval
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.backoff = backoff
        self.description = description or getattr(predicate, "__name__", "")

    def __repr__(self):
        return "<ReadinessCheck %s (%d x %ss)>" % (
            self.description, self.max_attempts, self.interval)


class Phase:  # pylint: disable=too-few-public-methods
    """A named, ordered unit of bootstrap work.

    Args:
        phase_id (str): unique identifier of the phase.
        action (callable): an idempotent callable receiving the run context.
        requires (list): identifiers of the phases which have to succeed
            before this one may run.
        readiness (ReadinessCheck): optional check run after the action.
        description (str): a short text shown in status output.
    """

    def __init__(self, phase_id, action, requires=None, readiness=None,
                 description=""):
        if not phase_id:
            raise ValueError("phase_id can't be empty")

        self.phase_id = phase_id
        self.action = action
        self.requires = list(requires or [])
        self.readiness = readiness
        self.description = description
        self.status = PhaseStatus.PENDING

    def __repr__(self):
        return f"<Phase {self.phase_id} [{self.status.value}]>"


class PhaseGraph:
    """A directed acyclic graph of phases keyed by identifier.

    Phases keep their insertion order, which is used to break ties in
    :meth:`topological_order`.
    """

    def __init__(self, phases=None):
        self._phases = {}
        self._order = None

        for phase in phases or []:
            self.add_phase(phase)

    def __iter__(self):
        return iter(self._phases.values())

    def __len__(self):
        return len(self._phases)

    def __contains__(self, phase_id):
        return phase_id in self._phases

    def get(self, phase_id):
        """Return the phase with the given identifier.

        Raises:
            KeyError if the phase is unknown.
        """
        return self._phases[phase_id]

    def add_phase(self, phase):
        """Add a phase to the graph.

        Raises:
            DuplicateIdentifier if a phase with the same id exists.
        """
        if phase.phase_id in self._phases:
            raise DuplicateIdentifier(phase.phase_id)

        self._phases[phase.phase_id] = phase
        self._order = None
        return phase

    def validate(self):
        """Check that all prerequisites exist and that there are no cycles.

        Raises:
            UnknownPrerequisite if a prerequisite can't be resolved.
            CycleDetected if the prerequisites form a cycle.
        """
        self.topological_order()

    def topological_order(self):
        """Return the phase ids in execution order.

        Every phase is placed after all of its prerequisites. Of all phases
        that could run next, the one added first wins. The order is computed
        once and cached until another phase is added.

        Returns:
            A list of phase identifiers.

        Raises:
            UnknownPrerequisite, CycleDetected
        """
        if self._order is not None:
            return list(self._order)

        for phase in self._phases.values():
            for req in phase.requires:
                if req not in self._phases:
                    raise UnknownPrerequisite(phase.phase_id, req)

        placed = set()
        order = []
        pending = list(self._phases)
        while pending:
            for phase_id in pending:
                if all(req in placed for req in self._phases[phase_id].requires):
                    break
            else:
                raise CycleDetected(self._find_cycle(pending))

            pending.remove(phase_id)
            placed.add(phase_id)
            order.append(phase_id)

        self._order = order
        return list(order)

    def _find_cycle(self, candidates):
        """Walk prerequisites from the first unplaced phase until a phase
        repeats. Every unplaced phase has at least one unplaced prerequisite,
        so the walk always ends on a cycle.
        """
        candidates = set(candidates)
        path = []
        seen = {}
        current = next(p for p in self._phases if p in candidates)
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = next(req for req in self._phases[current].requires
                           if req in candidates)

        return path[seen[current]:] + [current]

    def prerequisites(self, phase_id):
        """Return the phases the given phase directly depends on."""
        return [self._phases[req] for req in self._phases[phase_id].requires]
