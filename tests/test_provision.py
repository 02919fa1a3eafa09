import os
import unittest.mock

import pytest
import yaml

from kubestrap.deploy.k8s import K8S
from kubestrap.orchestrate.errors import ActionFailure, CommandError
from kubestrap.provision import cni, control_plane, runtime, system
from kubestrap.provision.phases import (BootstrapContext, build_phase_graph,
                                        CNI_CONFIGURE, CNI_INSTALL,
                                        CONTAINER_RUNTIME, CONTROL_PLANE_INIT,
                                        JOIN_COMMAND, MONITORING_AGENTS,
                                        SYSTEM_PREP)

from .fakes import FakeHost

FSTAB = """\
UUID=1234 / ext4 defaults 0 1
/swap.img none swap sw 0 0
# /old.img none swap sw 0 0
/dev/sdb1\tnone\tswap\tsw\t0\t0
"""

CONTAINERD_DEFAULT = """\
version = 2
[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
            SystemdCgroup = false
"""


def make_context(config, host):
    return BootstrapContext(config, host, k8s=unittest.mock.Mock(spec=K8S))


def read(host, path):
    with open(host.path(path)) as fh:
        return fh.read()


def mode(host, path):
    return os.stat(host.path(path)).st_mode & 0o777


class KubeadmHost(FakeHost):
    """Creates admin.conf like kubeadm init does"""

    def run(self, cmd, check=True, input_text=None):
        proc = super().run(cmd, check, input_text)
        if cmd[:2] == ["kubeadm", "init"]:
            self.write_file("/etc/kubernetes/admin.conf", "apiVersion: v1\n")
        return proc


# system-prep

def test_timesyncd_conf():
    assert system.timesyncd_conf(["a.ntp", "b.ntp"]) == \
        "[Time]\nNTP=a.ntp b.ntp\n"


def test_sysctl_conf():
    assert system.sysctl_conf({"net.ipv4.ip_forward": 1}) == \
        "net.ipv4.ip_forward=1\n"


def test_disable_swap_entries():
    updated = system.disable_swap_entries(FSTAB)
    assert updated.splitlines() == [
        "UUID=1234 / ext4 defaults 0 1",
        "#/swap.img none swap sw 0 0",
        "# /old.img none swap sw 0 0",
        "#/dev/sdb1\tnone\tswap\tsw\t0\t0",
    ]
    assert system.disable_swap_entries(updated) == updated


def test_prepare_system(config, fake_host):
    fake_host.write_file(system.FSTAB, FSTAB)
    context = make_context(config, fake_host)
    system.prepare_system(context)

    assert fake_host.ran("timedatectl", "set-timezone", "UTC")
    assert fake_host.ran("systemctl", "restart", "systemd-timesyncd")
    assert fake_host.ran("modprobe", "overlay")
    assert fake_host.ran("modprobe", "br_netfilter")
    assert fake_host.ran("sysctl", "--system")
    assert fake_host.ran("swapoff", "-a")
    assert "net.ipv4.ip_forward=1" in read(fake_host, system.SYSCTL_CONF)
    assert read(fake_host, system.MODULES_CONF) == "overlay\nbr_netfilter\n"
    assert "#/swap.img" in read(fake_host, system.FSTAB)


def test_prepare_system_twice(config, fake_host):
    context = make_context(config, fake_host)
    system.prepare_system(context)
    fake_host.commands = []

    system.prepare_system(context)
    assert not fake_host.ran("sysctl", "--system")
    assert not fake_host.ran("systemctl", "restart", "systemd-timesyncd")
    assert fake_host.ran("swapoff", "-a")


def test_prepare_system_fails(config, tmp_path):
    host = FakeHost(tmp_path, outputs={("modprobe",): (1, "")})
    with pytest.raises(CommandError):
        system.prepare_system(make_context(config, host))


# container-runtime

def test_enable_systemd_cgroup():
    assert "SystemdCgroup = true" in \
        runtime.enable_systemd_cgroup(CONTAINERD_DEFAULT)


def test_containerd_missing(config, fake_host):
    with pytest.raises(ActionFailure):
        runtime.configure_containerd(make_context(config, fake_host))


def test_configure_containerd(config, tmp_path):
    host = FakeHost(tmp_path, binaries=["containerd"], outputs={
        ("containerd", "config", "default"): (0, CONTAINERD_DEFAULT)})
    context = make_context(config, host)

    runtime.configure_containerd(context)
    assert "SystemdCgroup = true" in read(host, runtime.CONTAINERD_CONF)
    assert host.ran("systemctl", "enable", "containerd")
    assert host.ran("systemctl", "restart", "containerd")

    host.commands = []
    runtime.configure_containerd(context)
    assert not host.ran("systemctl", "restart", "containerd")

    host.active = False
    runtime.configure_containerd(context)
    assert host.ran("systemctl", "restart", "containerd")


def test_containerd_ready(fake_host):
    probe = runtime.containerd_ready(fake_host)
    assert probe()
    fake_host.active = False
    assert not probe()


# control-plane-init and join-command

def test_kubeadm_api_version():
    assert control_plane.kubeadm_api_version("1.34.0").endswith("v1beta4")
    assert control_plane.kubeadm_api_version("1.31.0").endswith("v1beta4")
    assert control_plane.kubeadm_api_version("1.30.5").endswith("v1beta3")


def test_kubeadm_config():
    cluster, init = control_plane.kubeadm_config("1.34.0", "192.168.0.0/16",
                                                 "10.0.0.5")
    assert cluster['kind'] == 'ClusterConfiguration'
    assert cluster['kubernetesVersion'] == "v1.34.0"
    assert cluster['networking'] == {'podSubnet': "192.168.0.0/16"}
    assert init['kind'] == 'InitConfiguration'
    assert init['nodeRegistration']['kubeletExtraArgs'] == [
        {'name': 'node-ip', 'value': '10.0.0.5'}]
    assert init['localAPIEndpoint'] == {'advertiseAddress': '10.0.0.5'}


def test_kubeadm_config_v1beta3_without_ip():
    cluster, init = control_plane.kubeadm_config("1.29.3", "10.244.0.0/16")
    assert cluster['apiVersion'] == "kubeadm.k8s.io/v1beta3"
    assert init['nodeRegistration']['kubeletExtraArgs'] == {}
    assert 'localAPIEndpoint' not in init


def test_detect_node_ip(tmp_path):
    host = FakeHost(tmp_path, binaries=["cloud-init"], outputs={
        ("cloud-init",): (0, "10.1.1.1\n"),
        ("ip", "route"): (0, "8.8.8.8 via 10.0.0.1 dev eth0 src 10.0.0.9\n")})
    assert control_plane.detect_node_ip(host, "10.0.0.5") == "10.0.0.5"
    assert control_plane.detect_node_ip(host) == "10.1.1.1"

    host.outputs[("cloud-init",)] = (0, "null\n")
    assert control_plane.detect_node_ip(host) == "10.0.0.9"

    host.outputs[("ip", "route")] = (2, "")
    assert control_plane.detect_node_ip(host) is None


def test_init_control_plane(config, tmp_path):
    host = KubeadmHost(tmp_path, binaries=control_plane.REQUIRED_BINARIES)
    context = make_context(config, host)
    control_plane.init_control_plane(context)

    assert host.ran("kubeadm", "init",
                    f"--config={control_plane.KUBEADM_CONF}")
    documents = list(yaml.safe_load_all(read(host,
                                             control_plane.KUBEADM_CONF)))
    assert documents[0]['networking']['podSubnet'] == "192.168.0.0/16"
    assert mode(host, control_plane.KUBEADM_CONF) == 0o600
    assert read(host, control_plane.ROOT_KUBECONFIG) == "apiVersion: v1\n"
    assert mode(host, control_plane.ROOT_KUBECONFIG) == 0o600

    host.commands = []
    control_plane.init_control_plane(context)
    assert not host.ran("kubeadm", "init")


def test_init_control_plane_missing_binaries(config, tmp_path):
    host = FakeHost(tmp_path, binaries=["kubeadm"])
    with pytest.raises(ActionFailure) as err:
        control_plane.init_control_plane(make_context(config, host))
    assert err.value.reason == "missing Kubernetes binaries: kubelet, kubectl"


def test_save_join_command(config, tmp_path):
    join = "kubeadm join 10.0.0.5:6443 --token abc.def " \
        "--discovery-token-ca-cert-hash sha256:123"
    host = FakeHost(tmp_path, outputs={("kubeadm", "token"): (0, join + "\n")})
    control_plane.save_join_command(make_context(config, host))

    assert read(host, control_plane.JOIN_SCRIPT) == \
        f"#!/bin/bash\n{join}\n"
    assert mode(host, control_plane.JOIN_SCRIPT) == 0o700


def test_save_join_command_unexpected_output(config, tmp_path):
    host = FakeHost(tmp_path, outputs={("kubeadm", "token"): (0, "oops")})
    with pytest.raises(ActionFailure):
        control_plane.save_join_command(make_context(config, host))


# cni-install and cni-configure

def test_felix_configuration():
    spec = cni.felix_configuration()['spec']
    assert spec == {'wireguardEnabled': True,
                    'wireguardInterfaceName': 'wg-calico',
                    'wireguardRoutingEnabled': True}
    assert cni.felix_configuration(False)['spec'] == \
        {'wireguardEnabled': False}


def test_ip_pool():
    pool = cni.ip_pool("192.168.0.0/16", "VXLAN", 1380)
    assert pool['kind'] == 'IPPool'
    assert pool['spec']['cidr'] == "192.168.0.0/16"
    assert pool['spec']['natOutgoing'] is True
    assert pool['spec']['mtu'] == 1380


def test_install_calico(config, fake_host):
    context = make_context(config, fake_host)
    cni.install_calico(context)

    base = "https://raw.githubusercontent.com/projectcalico/calico/v3.28.0"
    assert context.k8s.apply_url.call_args_list == [
        unittest.mock.call(f"{base}/manifests/tigera-operator.yaml",
                           server_side=True),
        unittest.mock.call(f"{base}/manifests/custom-resources.yaml")]


def test_configure_calico(config, fake_host):
    context = make_context(config, fake_host)
    context.k8s.remove_control_plane_taint.return_value = False
    cni.configure_calico(context)

    felix, pool = context.k8s.apply_documents.call_args[0][0]
    assert felix['kind'] == 'FelixConfiguration'
    assert pool['spec']['cidr'] == config['pod-subnet']
    assert yaml.safe_load(read(fake_host, cni.IPPOOL_MANIFEST)) == pool
    assert yaml.safe_load(read(fake_host, cni.FELIX_MANIFEST)) == felix
    context.k8s.remove_control_plane_taint.assert_called_once_with()


def test_calico_ready():
    k8s = unittest.mock.Mock(spec=K8S)
    k8s.felix_configuration_ready.return_value = False
    probe = cni.calico_ready(k8s)
    assert probe() is False
    k8s.felix_configuration_ready.return_value = True
    assert probe() is True


# phases

def test_phase_graph(config, fake_host):
    graph = build_phase_graph(make_context(config, fake_host))
    assert graph.topological_order() == [
        SYSTEM_PREP, CONTAINER_RUNTIME, CONTROL_PLANE_INIT, CNI_INSTALL,
        CNI_CONFIGURE, JOIN_COMMAND, MONITORING_AGENTS]

    init = graph.get(CONTROL_PLANE_INIT)
    assert init.readiness.interval == 10
    assert init.readiness.max_attempts == 30
    calico = graph.get(CNI_INSTALL)
    assert calico.readiness.interval == 5
    assert calico.readiness.max_attempts == 60
    assert graph.get(CNI_CONFIGURE).readiness is None
    assert graph.get(MONITORING_AGENTS).requires == [CONTROL_PLANE_INIT]


def test_phase_graph_without_monitoring(config, fake_host):
    config['monitoring']['enabled'] = False
    graph = build_phase_graph(make_context(config, fake_host))
    assert MONITORING_AGENTS not in graph
    assert len(graph) == 6
