"""
Configure containerd as container runtime for the kubelet.

containerd itself is expected to be installed already, kubestrap does not
talk to the package manager.
"""
import re

from kubestrap.orchestrate.errors import ActionFailure
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

CONTAINERD_CONF = "/etc/containerd/config.toml"
CONTAINERD_UNIT = "containerd"

SYSTEMD_CGROUP = re.compile(r"SystemdCgroup\s*=\s*false")


def enable_systemd_cgroup(config_toml):
    """Switch the runc shim to the systemd cgroup driver, which kubelet
    uses by default.
    """
    return SYSTEMD_CGROUP.sub("SystemdCgroup = true", config_toml)


def configure_containerd(context):
    """Action of the ``container-runtime`` phase.

    Writes the containerd configuration from ``containerd config default``
    with systemd cgroups enabled. The daemon is only restarted when the
    configuration changed or it isn't running.

    Raises:
        ActionFailure if containerd is not installed.
    """
    host = context.host
    if not host.which("containerd"):
        raise ActionFailure("containerd is not installed, please install it "
                            "with your package manager")

    default = host.run(["containerd", "config", "default"]).stdout
    changed = host.write_file(CONTAINERD_CONF, enable_systemd_cgroup(default))

    host.systemctl("enable", CONTAINERD_UNIT)
    if changed or not host.is_active(CONTAINERD_UNIT):
        LOGGER.info("Restarting containerd ...")
        host.systemctl("restart", CONTAINERD_UNIT)


def containerd_ready(host):
    """Return a readiness predicate for containerd"""
    def containerd_active():
        return host.is_active(CONTAINERD_UNIT)
    return containerd_active
