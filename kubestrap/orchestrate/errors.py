"""
Exceptions raised while building the phase graph and running the bootstrap.
"""


class KubestrapError(Exception):
    """Base class of all kubestrap errors"""


class GraphError(KubestrapError):
    """The phase graph is malformed"""


class DuplicateIdentifier(GraphError):
    """A phase with the same identifier was already added"""

    def __init__(self, phase_id):
        super().__init__(f"phase '{phase_id}' is already defined")
        self.phase_id = phase_id


class UnknownPrerequisite(GraphError):
    """A phase requires a phase which is not part of the graph"""

    def __init__(self, phase_id, prerequisite):
        super().__init__(f"phase '{phase_id}' requires unknown phase "
                         f"'{prerequisite}'")
        self.phase_id = phase_id
        self.prerequisite = prerequisite


class CycleDetected(GraphError):
    """The prerequisites of some phases form a cycle"""

    def __init__(self, phases):
        super().__init__("prerequisite cycle between phases: %s" %
                         " -> ".join(phases))
        self.phases = list(phases)


class TransientProbeError(KubestrapError):
    """A readiness probe could not answer yet, try again later"""


class ActionFailure(KubestrapError):
    """A phase action did not reach its desired state.

    Args:
        reason (str): A human readable reason shown to the operator.
    """

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason


class CommandError(ActionFailure):
    """An external command exited with a non zero status"""

    def __init__(self, cmd, returncode, stderr=""):
        if not isinstance(cmd, str):
            cmd = " ".join(cmd)
        reason = f"'{cmd}' failed with exit code {returncode}"
        if stderr:
            reason = f"{reason}: {stderr.strip()}"
        super().__init__(reason)
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class StoreUnavailable(KubestrapError):
    """The state directory can't be read or written"""


class RunCancelled(KubestrapError):
    """The run was cancelled from the outside"""


class ConfigError(KubestrapError, ValueError):
    """The configuration file is invalid"""
