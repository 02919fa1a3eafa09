# pylint: disable=missing-docstring
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version('kubestrap')
except PackageNotFoundError:
    __version__ = '0.1.0'

# Defining some constants
KUBERNETES_BASE_VERSION = "1.34.0"
CALICO_BASE_VERSION = "v3.28.0"
NODE_EXPORTER_VERSION = "1.7.0"
OTELCOL_VERSION = "0.102.0"

ADMIN_CONF = "/etc/kubernetes/admin.conf"
DEFAULT_STATE_DIR = "/var/lib/kubestrap/state"
