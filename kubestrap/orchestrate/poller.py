"""
Poller
======

Wait for an external system to converge.

The poller calls a readiness predicate until it returns True or the attempt
budget is used up. Probes which can't answer yet raise
:class:`TransientProbeError`, these count as "not ready" and are retried.
Sleeping happens on a :class:`threading.Event`, so a run can be cancelled
while it waits.
"""
import threading
import time

from kubestrap.util.logger import Logger

from .errors import RunCancelled, TransientProbeError

LOGGER = Logger(__name__)

READY = "Ready"
TIMED_OUT = "TimedOut"


class PollResult:  # pylint: disable=too-few-public-methods
    """The outcome of :meth:`ConvergencePoller.wait_for`.

    Attributes:
        status (str): ``READY`` or ``TIMED_OUT``.
        attempts (int): how often the predicate was called.
        last_error (str): message of the last transient probe error, None if
            the predicate only ever answered False.
        elapsed (float): seconds spent waiting.
    """

    def __init__(self, status, attempts, last_error=None, elapsed=0.0):
        self.status = status
        self.attempts = attempts
        self.last_error = last_error
        self.elapsed = elapsed

    @property
    def ready(self):
        """True if the predicate returned True"""
        return self.status == READY

    def describe(self):
        """A message for the operator"""
        if self.ready:
            return f"ready after {self.attempts} attempt(s)"

        msg = f"timed out after {self.attempts} attempt(s)"
        if self.last_error:
            msg = f"{msg}, last probe error: {self.last_error}"
        return msg

    def __repr__(self):
        return f"<PollResult {self.status} attempts={self.attempts}>"


class ConvergencePoller:
    """Poll readiness predicates with a bounded number of attempts.

    Args:
        transient (tuple): exception types treated as "not yet ready".
        cancel_event (threading.Event): set it to cancel waiting, a new
            event is created if omitted.
        clock (callable): returns monotonic seconds, for tests.
    """

    def __init__(self, transient=(TransientProbeError,), cancel_event=None,
                 clock=time.monotonic):
        self.transient = tuple(transient)
        self._cancel = cancel_event or threading.Event()
        self._clock = clock

    @property
    def cancelled(self):
        """True once :meth:`cancel` was called"""
        return self._cancel.is_set()

    def cancel(self):
        """Interrupt the current and all future waits"""
        self._cancel.set()

    def sleep(self, seconds):
        """Sleep for seconds unless cancelled.

        Raises:
            RunCancelled if the poller is or gets cancelled.
        """
        if seconds > 0:
            cancelled = self._cancel.wait(seconds)
        else:
            cancelled = self._cancel.is_set()

        if cancelled:
            raise RunCancelled("wait cancelled")

    def wait(self, check):
        """Wait for a :class:`kubestrap.orchestrate.graph.ReadinessCheck`"""
        return self.wait_for(check.predicate, check.interval,
                             check.max_attempts, timeout=check.timeout,
                             backoff=check.backoff,
                             description=check.description)

    # pylint: disable=too-many-arguments
    def wait_for(self, predicate, interval, max_attempts, timeout=None,
                 backoff=1, description=""):
        """Call predicate until it returns True.

        The first call is attempt 1. There is no sleep after the last attempt
        and the predicate is never called more than max_attempts times.

        Args:
            predicate (callable): returns True once ready.
            interval (float): seconds between attempts.
            max_attempts (int): the attempt budget.
            timeout (float): stop early once this many seconds elapsed.
            backoff (float): multiply interval by this after every attempt.
            description (str): used in log messages.

        Returns:
            :class:`PollResult`

        Raises:
            RunCancelled if cancelled while waiting.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        description = description or getattr(predicate, "__name__", "probe")
        start = self._clock()
        delay = interval
        last_error = None
        attempt = 0

        while attempt < max_attempts:
            if self.cancelled:
                raise RunCancelled(f"cancelled while waiting for {description}")

            attempt += 1
            try:
                if predicate():
                    LOGGER.debug("%s is ready (attempt %d/%d)", description,
                                 attempt, max_attempts)
                    return PollResult(READY, attempt, last_error,
                                      self._clock() - start)
                LOGGER.info("Waiting for %s ... (%d/%d)", description,
                            attempt, max_attempts)
            except self.transient as exc:
                last_error = str(exc) or exc.__class__.__name__
                LOGGER.debug("%s not ready (%d/%d): %s", description, attempt,
                             max_attempts, last_error)

            if attempt == max_attempts:
                break

            if timeout is not None and \
                    self._clock() - start + delay > timeout:
                LOGGER.debug("%s: timeout of %ss reached", description,
                             timeout)
                break

            self.sleep(delay)
            delay *= backoff

        return PollResult(TIMED_OUT, attempt, last_error,
                          self._clock() - start)
