"""
Phases
======

The phases of a kubestrap bootstrap and their prerequisites::

    system-prep
     └── container-runtime
          └── control-plane-init
               ├── cni-install
               │    └── cni-configure
               ├── join-command
               └── monitoring-agents

``monitoring-agents`` is left out when ``monitoring.enabled`` is false.
"""
from kubestrap.deploy.k8s import K8S
from kubestrap.orchestrate.graph import Phase, PhaseGraph, ReadinessCheck
from kubestrap.orchestrate.poller import ConvergencePoller

from .cni import calico_ready, configure_calico, install_calico
from .control_plane import init_control_plane, save_join_command
from .host import Host
from .monitoring import install_monitoring, node_exporter_ready
from .runtime import configure_containerd, containerd_ready
from .system import prepare_system

SYSTEM_PREP = "system-prep"
CONTAINER_RUNTIME = "container-runtime"
CONTROL_PLANE_INIT = "control-plane-init"
CNI_INSTALL = "cni-install"
CNI_CONFIGURE = "cni-configure"
JOIN_COMMAND = "join-command"
MONITORING_AGENTS = "monitoring-agents"


class BootstrapContext:  # pylint: disable=too-few-public-methods
    """Everything the phase actions need.

    Args:
        config (dict): the validated kubestrap configuration.
        host (Host): the machine to bootstrap.
        k8s (K8S): access to the cluster once the control plane is up.
        poller (ConvergencePoller): the orchestrator's poller, its
            cancellable sleep is used for waits inside actions.
    """

    def __init__(self, config, host=None, k8s=None, poller=None):
        self.config = config
        self.host = host or Host()
        self.k8s = k8s or K8S(config['kubeconfig'], host=self.host)
        self.poller = poller or ConvergencePoller()


def build_phase_graph(context):
    """Return the :class:`PhaseGraph` bootstrapping a node.

    Args:
        context (BootstrapContext)
    """
    graph = PhaseGraph()

    graph.add_phase(Phase(
        SYSTEM_PREP, prepare_system,
        description="time, kernel modules, sysctls and swap"))

    graph.add_phase(Phase(
        CONTAINER_RUNTIME, configure_containerd,
        requires=[SYSTEM_PREP],
        readiness=ReadinessCheck(containerd_ready(context.host),
                                 interval=2, max_attempts=15,
                                 description="containerd"),
        description="containerd with systemd cgroups"))

    graph.add_phase(Phase(
        CONTROL_PLANE_INIT, init_control_plane,
        requires=[CONTAINER_RUNTIME],
        readiness=ReadinessCheck(context.k8s.is_ready,
                                 interval=10, max_attempts=30,
                                 description="API server"),
        description="kubeadm init and admin kubeconfig"))

    graph.add_phase(Phase(
        CNI_INSTALL, install_calico,
        requires=[CONTROL_PLANE_INIT],
        readiness=ReadinessCheck(calico_ready(context.k8s),
                                 interval=5, max_attempts=60,
                                 description="Calico FelixConfiguration"),
        description="Tigera operator and Calico custom resources"))

    graph.add_phase(Phase(
        CNI_CONFIGURE, configure_calico,
        requires=[CNI_INSTALL],
        description="WireGuard, IP pool and control plane taint"))

    graph.add_phase(Phase(
        JOIN_COMMAND, save_join_command,
        requires=[CONTROL_PLANE_INIT],
        description="join command for worker nodes"))

    monitoring = context.config['monitoring']
    if monitoring['enabled']:
        graph.add_phase(Phase(
            MONITORING_AGENTS, install_monitoring,
            requires=[CONTROL_PLANE_INIT],
            readiness=ReadinessCheck(
                node_exporter_ready(monitoring['node-exporter-port']),
                interval=2, max_attempts=15,
                description="Node Exporter metrics"),
            description="Prometheus Node Exporter and OpenTelemetry "
                        "Collector"))

    return graph
