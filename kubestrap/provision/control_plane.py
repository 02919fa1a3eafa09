"""
Initialize the Kubernetes control plane with ``kubeadm``.

The control plane is described by a kubeadm configuration document with
the Kubernetes version, the pod network CIDR and the node's address.
``kubeadm init`` produces the admin credential file, which is installed as
root's kubeconfig, and the join command for further nodes is saved next
to it.
"""
import yaml

from kubestrap import ADMIN_CONF
from kubestrap.orchestrate.errors import ActionFailure
from kubestrap.util.logger import Logger
from kubestrap.util.net import is_ip, parse_route_src

LOGGER = Logger(__name__)

KUBEADM_CONF = "/etc/kubernetes/kubeadm-config.yaml"
ROOT_KUBECONFIG = "/root/.kube/config"
JOIN_SCRIPT = "/root/join.sh"
KUBECTL_COMPLETION = "/etc/profile.d/kubectl-completion.sh"

REQUIRED_BINARIES = ["kubeadm", "kubelet", "kubectl"]

KUBECTL_COMPLETION_SCRIPT = """\
if command -v kubectl >/dev/null 2>&1; then
  source <(kubectl completion bash)
fi
"""


def kubeadm_api_version(k8s_version):
    """kubeadm v1beta4 exists since Kubernetes 1.31"""
    major, minor = (int(part) for part in k8s_version.split(".")[:2])
    if (major, minor) >= (1, 31):
        return "kubeadm.k8s.io/v1beta4"
    return "kubeadm.k8s.io/v1beta3"


def kubeadm_config(k8s_version, pod_subnet, node_ip=None):
    """Return the kubeadm configuration documents.

    Args:
        k8s_version (str): e.g. "1.34.0".
        pod_subnet (str): the pod network CIDR, must match Calico's IP pool.
        node_ip (str): the address kubelet advertises, auto-detected by
            kubeadm if None.

    Returns:
        list of dicts (ClusterConfiguration, InitConfiguration).
    """
    api_version = kubeadm_api_version(k8s_version)
    cluster = {
        'apiVersion': api_version,
        'kind': 'ClusterConfiguration',
        'kubernetesVersion': f"v{k8s_version}",
        'networking': {'podSubnet': pod_subnet},
    }

    extra_args = {}
    if node_ip:
        extra_args['node-ip'] = node_ip
    if api_version.endswith("v1beta4"):
        extra_args = [{'name': key, 'value': val}
                      for key, val in extra_args.items()]

    init = {
        'apiVersion': api_version,
        'kind': 'InitConfiguration',
        'nodeRegistration': {'kubeletExtraArgs': extra_args},
    }
    if node_ip:
        init['localAPIEndpoint'] = {'advertiseAddress': node_ip}

    return [cluster, init]


def detect_node_ip(host, configured=""):
    """Find the address of this node.

    The configured address wins, then the address cloud-init reports and
    last the source address of the default route.

    Returns:
        The IP address as string or None.
    """
    if configured:
        return configured

    if host.which("cloud-init"):
        proc = host.run(["cloud-init", "query", "local-ipv4"], check=False)
        addr = proc.stdout.strip()
        if not proc.returncode and is_ip(addr):
            LOGGER.debug("cloud-init reports node IP %s", addr)
            return addr

    proc = host.run(["ip", "route", "get", "8.8.8.8"], check=False)
    if not proc.returncode:
        addr = parse_route_src(proc.stdout)
        if addr:
            LOGGER.debug("Default route uses node IP %s", addr)
            return addr

    return None


def init_control_plane(context):
    """Action of the ``control-plane-init`` phase.

    ``kubeadm init`` runs only if no admin credential file exists, so a
    resumed bootstrap won't try to initialize the cluster twice.

    Raises:
        ActionFailure if the Kubernetes binaries are missing.
    """
    host, config = context.host, context.config
    missing = [b for b in REQUIRED_BINARIES if not host.which(b)]
    if missing:
        raise ActionFailure("missing Kubernetes binaries: %s" %
                            ", ".join(missing))

    node_ip = detect_node_ip(host, config['node-ip'])
    if node_ip:
        LOGGER.info("Configured node-ip: %s", node_ip)
    else:
        LOGGER.warning("Could not detect node IP, kubeadm will auto-detect")

    documents = kubeadm_config(config['kubernetes-version'],
                               config['pod-subnet'], node_ip)
    host.write_file(KUBEADM_CONF,
                    yaml.safe_dump_all(documents, default_flow_style=False),
                    0o600)
    host.write_file(KUBECTL_COMPLETION, KUBECTL_COMPLETION_SCRIPT, 0o755)

    admin_conf = config.get('kubeconfig') or ADMIN_CONF
    if host.exists(admin_conf):
        LOGGER.info("%s exists, the control plane is already initialized",
                    admin_conf)
    else:
        LOGGER.info("Initializing Kubernetes cluster (this may take a few "
                    "minutes) ...")
        host.run(["kubeadm", "init", f"--config={KUBEADM_CONF}",
                  "--ignore-preflight-errors=Swap"])

    host.copy_file(admin_conf, ROOT_KUBECONFIG, 0o600)


def save_join_command(context):
    """Action of the ``join-command`` phase.

    Creates a new bootstrap token on every run, tokens expire after 24h.
    """
    host = context.host
    proc = host.run(["kubeadm", "token", "create", "--print-join-command"])
    command = proc.stdout.strip()
    if not command.startswith("kubeadm join"):
        raise ActionFailure(f"unexpected output of kubeadm: {command!r}")

    host.write_file(JOIN_SCRIPT, f"#!/bin/bash\n{command}\n", 0o700)
    LOGGER.info("Join command saved to %s", JOIN_SCRIPT)
