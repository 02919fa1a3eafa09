"""
cli.py
======

misc functions to drive the bootstrap, usually called from
``kubestrap.kubestrap.Kubestrap``.

Don't use directly
"""
import signal

from huepy import bold, green, red, yellow, grey  # pylint: disable=no-name-in-module

from .orchestrate.orchestrator import Orchestrator
from .orchestrate.poller import ConvergencePoller
from .orchestrate.state import StateStore
from .orchestrate.graph import PhaseStatus
from .provision.host import Host
from .provision.monitoring import get_agents
from .provision.phases import BootstrapContext, build_phase_graph
from .util.logger import Logger

LOGGER = Logger(__name__)

STATUS_COLORS = {
    PhaseStatus.SUCCEEDED: green,
    PhaseStatus.FAILED: red,
    PhaseStatus.RUNNING: yellow,
    PhaseStatus.PENDING: grey,
}


def get_orchestrator(config, host=None):
    """Wire the default phases, the state store and the orchestrator.

    Args:
        config (dict): the validated configuration.
        host (Host): the machine to bootstrap, the local one by default.

    Returns:
        :class:`kubestrap.orchestrate.orchestrator.Orchestrator`
    """
    poller = ConvergencePoller()
    context = BootstrapContext(config, host or Host(), poller=poller)
    settings = config['orchestrator']
    return Orchestrator(build_phase_graph(context),
                        StateStore(settings['state-dir']),
                        poller=poller,
                        retries=settings['retries'],
                        retry_delay=settings['retry-delay'],
                        context=context)


def cancel_on_signal(orchestrator, signums=(signal.SIGTERM,)):
    """Cancel the orchestrator when one of signums arrives.

    SIGINT is left alone, Python turns it into ``KeyboardInterrupt`` which
    the orchestrator handles.
    """
    def handler(signum, frame):  # pylint: disable=unused-argument
        LOGGER.warning("Received signal %d", signum)
        orchestrator.cancel()

    for signum in signums:
        signal.signal(signum, handler)


def format_status(phase, record):
    """One line per phase for ``kubestrap status``"""
    status = record.status if record else PhaseStatus.PENDING
    line = "{:<20} {:<10}".format(phase.phase_id,
                                  STATUS_COLORS[status](status.value))
    if record:
        line += f" {record.timestamp} attempts={record.attempts}"
        if record.error:
            line += f" error={record.error}"
    return line


def print_status(orchestrator):
    """Print the recorded state of all phases"""
    for phase, record in orchestrator.status():
        print(format_status(phase, record))


def print_graph(graph):
    """Print the execution order and the prerequisites"""
    for idx, phase_id in enumerate(graph.topological_order(), 1):
        phase = graph.get(phase_id)
        requires = ", ".join(phase.requires) or "-"
        print(f"{idx}. {bold(phase_id)} (requires: {requires}) "
              f"{phase.description}")


def report_abort(report):
    """Tell the operator which phase failed and how to resume"""
    LOGGER.error("Phase:    %s", report.failed_phase)
    LOGGER.error("Error:    %s", report.last_error)
    LOGGER.error("Attempts: %d", report.attempts)
    if report.cancelled:
        LOGGER.warning("The bootstrap was interrupted.")
    LOGGER.info("Fix the problem and run 'kubestrap apply' again, "
                "succeeded phases are skipped.")


def control_agents(config, action, name="", host=None):
    """Run action on all monitoring agents or the one called name.

    Returns:
        list of the agents acted on.

    Raises:
        ValueError if name or action is unknown.
    """
    host = host or Host()
    agents = get_agents(config)
    if name:
        agents = [agent for agent in agents if agent.name == name]
        if not agents:
            raise ValueError(f"unknown agent '{name}'")

    for agent in agents:
        LOGGER.info("%s %s ...", action.capitalize(), agent.name)
        result = agent.control(host, action)
        if action == "status":
            print(result)
    return agents
