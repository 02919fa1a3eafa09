"""
kubestrap
=========

The main entry point for bootstrapping a single Kubernetes control plane
node. Don't use it directly, instead install the package with setup.py.
It automatically creates an executable in your path.

"""
import argparse
import sys

from mach import mach1

from . import __version__
from .cli import (cancel_on_signal, control_agents, get_orchestrator,
                  print_graph, print_status, report_abort)
from .config import load_config
from .orchestrate.errors import (ActionFailure, ConfigError, GraphError,
                                StoreUnavailable)
from .util.logger import Logger

LOGGER = Logger(__name__)


def _load(config):
    try:
        return load_config(config)
    except ConfigError as err:
        LOGGER.error(f"Error: {err}")
        sys.exit(2)


@mach1()
class Kubestrap:  # pylint: disable=no-self-use
    """
    The main entry point for the program. This class does the CLI parsing
    and decides which action should be taken
    """
    def __init__(self):
        self.parser.add_argument(  # pylint: disable=no-member
            "--version", action="store_true",
            help="show version and exit",
            default=argparse.SUPPRESS)

        verbosity_help = "".join([
            "set the verbosity level (",
            "0 = quiet, ",
            "1 = error, ",
            "2 = warning, ",
            "3 = info, ",
            "4 = debug)"])
        self.parser.add_argument("--verbosity",  # pylint: disable=no-member
                                 "-v",
                                 help=verbosity_help,
                                 choices=['0', '1', '2', '3', '4', 'quiet',
                                          'error', 'warning', 'info', 'debug'],
                                 type=str,
                                 default=3)

    def _get_version(self):
        print("%s version: %s" % (self.__class__.__name__, __version__))

    def apply(self, config: str, force: bool = False):
        """
        Bootstrap this node as Kubernetes control plane

        config - configuration file
        force - run phases again even if they already succeeded
        ---
        Phases which already succeeded are skipped, so after a failure fix
        the problem and run apply again.
        """
        config_dict = _load(config)
        orchestrator = get_orchestrator(config_dict)
        cancel_on_signal(orchestrator)

        try:
            report = orchestrator.run(force=force)
        except (GraphError, StoreUnavailable) as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(2)

        if not report.completed:
            report_abort(report)
            sys.exit(1)

        LOGGER.success("Control plane of '%s' is ready",
                       config_dict['cluster-name'])

    def status(self, config: str):
        """
        Show the recorded state of every phase

        config - configuration file
        """
        orchestrator = get_orchestrator(_load(config))
        try:
            print_status(orchestrator)
        except (GraphError, StoreUnavailable) as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(2)

    def reset(self, config: str, phase: str = ""):
        """
        Forget the recorded state so phases run again

        config - configuration file
        phase - only forget this phase
        """
        orchestrator = get_orchestrator(_load(config))
        if phase and phase not in orchestrator.graph:
            LOGGER.error(f"Error: unknown phase '{phase}'")
            sys.exit(1)

        try:
            removed = orchestrator.store.reset(phase or None)
        except StoreUnavailable as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(2)

        for phase_id in removed:
            LOGGER.success("Forgot state of %s", phase_id)
        if not removed:
            LOGGER.info("Nothing to reset")

    def agent(self, config: str, action: str, name: str = ""):
        """
        Control the monitoring agents

        config - configuration file
        action - one of start, stop, restart or status
        name - node-exporter or otelcol, all agents if omitted
        """
        try:
            control_agents(_load(config), action, name)
        except (ValueError, ActionFailure) as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(1)

    def graph(self, config: str):
        """
        Show the phases in execution order

        config - configuration file
        """
        orchestrator = get_orchestrator(_load(config))
        try:
            print_graph(orchestrator.graph)
        except GraphError as err:
            LOGGER.error(f"Error: {err}")
            sys.exit(2)


def main():
    """
    run and execute kubestrap
    """
    k = Kubestrap()

    # pylint: disable=no-member
    k.parser.description = 'kubestrap must run as root on the node '\
                           'which becomes the control plane.'

    # Setting verbosity level
    LOGGER.level = k.parser.parse_args().verbosity

    # the mach decorator analyzes the methods in the class and dynamically
    # creates the CLI parser. It also adds the method run to the class.
    k.run()  # pylint: disable=no-member
