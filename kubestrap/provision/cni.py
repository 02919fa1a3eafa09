"""
Install Calico as CNI through the Tigera operator and configure its IP pool
and WireGuard encryption.
"""
import yaml

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

CALICO_MANIFESTS_URL = ("https://raw.githubusercontent.com/projectcalico/"
                        "calico/{version}/manifests/{name}")
FELIX_MANIFEST = "/etc/kubernetes/manifests/calico-felix-wireguard.yaml"
IPPOOL_MANIFEST = "/etc/kubernetes/manifests/calico-ip-pool.yaml"
WIREGUARD_INTERFACE = "wg-calico"


def manifest_url(version, name):
    """The URL of a manifest shipped with a Calico release"""
    return CALICO_MANIFESTS_URL.format(version=version, name=name)


def felix_configuration(wireguard=True):
    """The default FelixConfiguration with WireGuard on or off"""
    spec = {'wireguardEnabled': bool(wireguard)}
    if wireguard:
        spec['wireguardInterfaceName'] = WIREGUARD_INTERFACE
        spec['wireguardRoutingEnabled'] = True

    return {'apiVersion': 'crd.projectcalico.org/v1',
            'kind': 'FelixConfiguration',
            'metadata': {'name': 'default'},
            'spec': spec}


def ip_pool(cidr, encapsulation="VXLAN", mtu=1380):
    """The default IPv4 pool.

    Args:
        cidr (str): must match the pod subnet of the control plane.
        encapsulation (str): one of Calico's encapsulation modes.
        mtu (int): lower than the NIC's MTU to fit the WireGuard overhead.
    """
    return {'apiVersion': 'crd.projectcalico.org/v1',
            'kind': 'IPPool',
            'metadata': {'name': 'default-ipv4-ippool'},
            'spec': {'cidr': cidr,
                     'encapsulation': encapsulation,
                     'natOutgoing': True,
                     'nodeSelector': 'all()',
                     'mtu': mtu}}


def install_calico(context):
    """Action of the ``cni-install`` phase.

    ``kubectl apply`` makes both steps safe to repeat. The operator manifest
    is applied server side, its CRDs are too large for the last-applied
    annotation.
    """
    version = context.config['calico']['version']
    context.k8s.apply_url(manifest_url(version, "tigera-operator.yaml"),
                          server_side=True)
    context.k8s.apply_url(manifest_url(version, "custom-resources.yaml"))


def configure_calico(context):
    """Action of the ``cni-configure`` phase.

    The resources are kept in /etc/kubernetes/manifests for reference and
    applied from there.
    """
    host, config = context.host, context.config
    calico = config['calico']

    felix = felix_configuration(calico['wireguard'])
    pool = ip_pool(config['pod-subnet'], calico['encapsulation'],
                   calico['mtu'])
    host.write_file(FELIX_MANIFEST, yaml.safe_dump(felix,
                                                   default_flow_style=False))
    host.write_file(IPPOOL_MANIFEST, yaml.safe_dump(pool,
                                                    default_flow_style=False))

    context.k8s.apply_documents([felix, pool])
    if not context.k8s.remove_control_plane_taint():
        LOGGER.info("Control plane taint already removed")

    LOGGER.success("Calico installed and configured")


def calico_ready(k8s):
    """Return a readiness predicate for Calico"""
    def felix_configuration_present():
        return k8s.felix_configuration_ready()
    return felix_configuration_present
