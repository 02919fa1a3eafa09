"""
kubestrap.orchestrate
---------------------

The supervised bootstrap core: phases and their graph, the executor running
single phases, the convergence poller, the durable state store and the
orchestrator tying them together.
"""
from .errors import (KubestrapError, GraphError, DuplicateIdentifier,
                     UnknownPrerequisite, CycleDetected, TransientProbeError,
                     ActionFailure, CommandError, StoreUnavailable,
                     RunCancelled, ConfigError)
from .graph import Phase, PhaseGraph, PhaseStatus, ReadinessCheck
from .executor import Outcome, PhaseExecutor
from .poller import ConvergencePoller, PollResult, READY, TIMED_OUT
from .state import ExecutionRecord, StateStore
from .orchestrator import Orchestrator, RunReport, RunState

__all__ = [
    'KubestrapError', 'GraphError', 'DuplicateIdentifier',
    'UnknownPrerequisite', 'CycleDetected', 'TransientProbeError',
    'ActionFailure', 'CommandError', 'StoreUnavailable', 'RunCancelled',
    'ConfigError',
    'Phase', 'PhaseGraph', 'PhaseStatus', 'ReadinessCheck',
    'Outcome', 'PhaseExecutor',
    'ConvergencePoller', 'PollResult', 'READY', 'TIMED_OUT',
    'ExecutionRecord', 'StateStore',
    'Orchestrator', 'RunReport', 'RunState',
]
