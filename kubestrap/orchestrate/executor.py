"""
Executor
========

Run the action of a single phase and capture the result.
"""
import time

from kubestrap.util.logger import Logger

from .errors import ActionFailure

LOGGER = Logger(__name__)


class Outcome:
    """The result of running a phase action.

    Use :meth:`success` and :meth:`failure` to create instances.

    Attributes:
        ok (bool): True if the action succeeded.
        reason (str): why the action failed, None on success.
    """

    __slots__ = ('ok', 'reason')

    def __init__(self, ok, reason=None):
        self.ok = ok
        self.reason = reason

    @classmethod
    def success(cls):
        """A successful outcome"""
        return cls(True)

    @classmethod
    def failure(cls, reason):
        """A failed outcome with a reason"""
        return cls(False, str(reason) or "unknown error")

    def __eq__(self, other):
        if not isinstance(other, Outcome):
            return NotImplemented
        return (self.ok, self.reason) == (other.ok, other.reason)

    def __repr__(self):
        if self.ok:
            return "<Outcome Success>"
        return f"<Outcome Failure({self.reason!r})>"


class PhaseExecutor:  # pylint: disable=too-few-public-methods
    """Execute phase actions.

    Actions signal failure by raising :class:`ActionFailure` (or one of its
    subclasses like :class:`kubestrap.orchestrate.errors.CommandError`).
    An ``OSError`` raised by an action, e.g. a file which can't be written,
    is a failure as well. Every other exception is a bug and propagates.
    """

    def __init__(self):
        self.current = None

    def execute(self, phase, context=None):
        """Run the action of phase.

        Args:
            phase (:class:`kubestrap.orchestrate.graph.Phase`)
            context: passed to the action as only argument.

        Returns:
            :class:`Outcome`
        """
        self.current = phase
        start = time.monotonic()
        LOGGER.debug("Executing action of %s", phase.phase_id)
        try:
            phase.action(context)
        except ActionFailure as exc:
            LOGGER.debug("%s failed: %s", phase.phase_id, exc.reason)
            return Outcome.failure(exc.reason)
        except OSError as exc:
            LOGGER.debug("%s failed: %s", phase.phase_id, exc)
            return Outcome.failure(f"{exc.__class__.__name__}: {exc}")
        finally:
            self.current = None

        LOGGER.debug("%s action finished in %.1fs", phase.phase_id,
                     time.monotonic() - start)
        return Outcome.success()
