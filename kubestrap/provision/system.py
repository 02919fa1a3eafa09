"""
Prepare the operating system for kubelet and the container runtime:
time, kernel modules, sysctls and swap.
"""
import re
import textwrap

from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

TIMESYNCD_CONF = "/etc/systemd/timesyncd.conf"
MODULES_CONF = "/etc/modules-load.d/k8s.conf"
SYSCTL_CONF = "/etc/sysctl.d/k8s.conf"
SYSCTL_TUNING_CONF = "/etc/sysctl.d/99-kubestrap.conf"
FSTAB = "/etc/fstab"

KERNEL_MODULES = ["overlay", "br_netfilter"]

K8S_SYSCTLS = {
    "net.bridge.bridge-nf-call-iptables": 1,
    "net.bridge.bridge-nf-call-ip6tables": 1,
    "net.ipv4.ip_forward": 1,
}

TUNING_SYSCTLS = {
    "net.ipv4.tcp_slow_start_after_idle": 0,
    "net.ipv4.tcp_tw_reuse": 1,
}

SWAP_LINE = re.compile(r"^(?![ \t]*#)(\S+[ \t]+\S+[ \t]+swap[ \t].*)$",
                       re.MULTILINE)


def timesyncd_conf(ntp_servers):
    """Return the content of timesyncd.conf"""
    return textwrap.dedent("""\
        [Time]
        NTP={}
        """).format(" ".join(ntp_servers))


def sysctl_conf(values):
    """Render a sysctl.d file"""
    return "".join(f"{key}={val}\n" for key, val in values.items())


def disable_swap_entries(fstab):
    """Comment out all active swap entries of an fstab.

    Returns:
        The new content, unchanged if there's no active swap entry.
    """
    return SWAP_LINE.sub(r"#\1", fstab)


def configure_time(host, config):
    """Set the timezone and the NTP servers"""
    host.run(["timedatectl", "set-timezone", config['timezone']])
    if host.write_file(TIMESYNCD_CONF, timesyncd_conf(config['ntp-servers'])):
        host.systemctl("restart", "systemd-timesyncd", check=False)


def load_kernel_modules(host):
    """Persist and load the modules needed by containerd and Calico"""
    host.write_file(MODULES_CONF, "\n".join(KERNEL_MODULES) + "\n")
    for module in KERNEL_MODULES:
        host.run(["modprobe", module])


def apply_sysctls(host):
    """Write and activate the sysctls kubeadm's preflight checks want"""
    changed = host.write_file(SYSCTL_CONF, sysctl_conf(K8S_SYSCTLS))
    changed |= host.write_file(SYSCTL_TUNING_CONF,
                               sysctl_conf(TUNING_SYSCTLS))
    if changed:
        host.run(["sysctl", "--system"])


def disable_swap(host):
    """Turn swap off now and after the next reboot"""
    fstab = host.read_file(FSTAB)
    if fstab is not None:
        updated = disable_swap_entries(fstab)
        if updated != fstab:
            LOGGER.info("Disabling swap in %s", FSTAB)
            host.write_file(FSTAB, updated)
    host.run(["swapoff", "-a"])


def prepare_system(context):
    """Action of the ``system-prep`` phase"""
    host, config = context.host, context.config
    configure_time(host, config)
    load_kernel_modules(host)
    apply_sysctls(host)
    disable_swap(host)
