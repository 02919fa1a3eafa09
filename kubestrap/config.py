"""
config.py
=========

Load and validate the kubestrap configuration file.

The configuration is a YAML file. Every key is optional, missing keys are
taken from :data:`DEFAULTS`. An example:

.. code:: yaml

    cluster-name: lab
    pod-subnet: 192.168.0.0/16
    calico:
      wireguard: true
      mtu: 1380
    monitoring:
      signoz-endpoint: http://signoz.example.com:4318
      signoz-api-key: s3cr3t
"""
import copy

import yaml
from netaddr import valid_ipv4

from . import (ADMIN_CONF, CALICO_BASE_VERSION, DEFAULT_STATE_DIR,
               KUBERNETES_BASE_VERSION, NODE_EXPORTER_VERSION,
               OTELCOL_VERSION)
from .orchestrate.errors import ConfigError
from .util.net import is_cidr, is_port
from .util.util import deep_merge, k8s_version_validation, name_validation

DEFAULTS = {
    'cluster-name': 'kubestrap',
    'kubernetes-version': KUBERNETES_BASE_VERSION,
    'pod-subnet': '192.168.0.0/16',
    'node-ip': '',
    'timezone': 'UTC',
    'ntp-servers': ['0.pool.ntp.org', '1.pool.ntp.org', '2.pool.ntp.org'],
    'kubeconfig': ADMIN_CONF,
    'calico': {
        'version': CALICO_BASE_VERSION,
        'wireguard': True,
        'encapsulation': 'VXLAN',
        'mtu': 1380,
    },
    'monitoring': {
        'enabled': True,
        'prometheus-remote-write-url': '',
        'signoz-endpoint': 'http://signoz-server:4318',
        'signoz-api-key': '',
        'node-exporter-port': 9100,
        'node-exporter-version': NODE_EXPORTER_VERSION,
        'otelcol-version': OTELCOL_VERSION,
    },
    'orchestrator': {
        'state-dir': DEFAULT_STATE_DIR,
        'retries': 3,
        'retry-delay': 5,
    },
}

ENCAPSULATIONS = ('VXLAN', 'VXLANCrossSubnet', 'IPIP', 'IPIPCrossSubnet',
                  'None')


def load_config(path):
    """Read the configuration file at path and merge it over the defaults.

    Args:
        path (str): the YAML configuration file.

    Returns:
        The validated configuration as ``dict``.

    Raises:
        ConfigError if the file can't be read or is invalid.
    """
    try:
        with open(path, 'r') as stream:
            data = yaml.safe_load(stream)
    except OSError as exc:
        raise ConfigError(f"can't read configuration {path}: {exc}")
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}")

    return from_dict(data)


def from_dict(data):
    """Merge data over the defaults and validate the result"""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")

    config = deep_merge(copy.deepcopy(DEFAULTS), data)
    validate_config(config)
    return config


def _section(config, name):
    section = config.get(name)
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return section


# pylint: disable=too-many-branches
def validate_config(config):
    """Check a merged configuration.

    Raises:
        ConfigError describing the first problem found.
    """
    name_validation(config['cluster-name'])

    version = str(config['kubernetes-version']).lstrip("v")
    if not k8s_version_validation(version):
        raise ConfigError(f"invalid kubernetes-version '{version}', "
                          "expected X.Y.Z")
    config['kubernetes-version'] = version

    if not is_cidr(config['pod-subnet']):
        raise ConfigError(f"pod-subnet '{config['pod-subnet']}' is not a "
                          "network in CIDR notation")

    node_ip = config['node-ip'] or ''
    if node_ip and not valid_ipv4(node_ip):
        raise ConfigError(f"node-ip '{node_ip}' is not a valid IPv4 address")

    if not isinstance(config['ntp-servers'], list):
        raise ConfigError("ntp-servers must be a list")

    calico = _section(config, 'calico')
    if str(calico['encapsulation']) not in ENCAPSULATIONS:
        raise ConfigError("calico.encapsulation must be one of "
                          "%s" % ", ".join(ENCAPSULATIONS))
    if not isinstance(calico['mtu'], int) or not 576 <= calico['mtu'] <= 9000:
        raise ConfigError("calico.mtu must be an integer between 576 and 9000")

    monitoring = _section(config, 'monitoring')
    if not is_port(monitoring['node-exporter-port']):
        raise ConfigError("monitoring.node-exporter-port is not a valid port")
    if monitoring['enabled'] and not monitoring['signoz-endpoint']:
        raise ConfigError("monitoring.signoz-endpoint can't be empty")
    for key in ('signoz-api-key', 'prometheus-remote-write-url'):
        if monitoring[key] is None:
            monitoring[key] = ''

    orchestrator = _section(config, 'orchestrator')
    if not orchestrator['state-dir']:
        raise ConfigError("orchestrator.state-dir can't be empty")
    if not isinstance(orchestrator['retries'], int) or \
            orchestrator['retries'] < 1:
        raise ConfigError("orchestrator.retries must be at least 1")
    if not isinstance(orchestrator['retry-delay'], (int, float)) or \
            orchestrator['retry-delay'] < 0:
        raise ConfigError("orchestrator.retry-delay can't be negative")

    return config
