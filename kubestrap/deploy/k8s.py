"""
Talk to the bootstrapped cluster via the API server and kubectl
"""
import logging

import urllib3
import yaml

from kubernetes import client as k8sclient
from kubernetes.client import api_client
from kubernetes.client.configuration import Configuration
from kubernetes.client.rest import ApiException
from kubernetes.config import kube_config
from kubernetes.config.config_exception import ConfigException

from kubestrap import ADMIN_CONF
from kubestrap.orchestrate.errors import TransientProbeError
from kubestrap.provision.host import Host
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)

CALICO_GROUP = "crd.projectcalico.org"
CALICO_API_VERSION = "v1"
CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane"


class K8S:
    """Class allowing various interactions with the bootstrapped cluster.

    The kubeconfig is loaded on first use, since it doesn't exist before
    ``kubeadm init`` ran. A missing or broken kubeconfig makes the readiness
    probes raise :class:`TransientProbeError`.

    Args:
        config (str): File path for the kubernetes configuration file
        host (Host): used to run kubectl.
    """

    def __init__(self, config=ADMIN_CONF, host=None):
        self.config = config
        self.host = host or Host()
        self._client = None

    @property
    def client(self):
        """An ApiClient configured from the kubeconfig.

        Raises:
            TransientProbeError if the kubeconfig can't be loaded.
        """
        if self._client is None:
            configuration = Configuration()
            try:
                kube_config.load_kube_config(
                    config_file=self.config,
                    client_configuration=configuration)
            except (ConfigException, OSError) as exc:
                raise TransientProbeError(
                    f"can't load kubeconfig {self.config}: {exc}")
            self._client = api_client.ApiClient(configuration=configuration)
        return self._client

    def is_ready(self):
        """Check if the API server is already available.

        Returns:
            True if it's reachable.

        Raises:
            TransientProbeError if the API server can't be reached yet.
        """
        logging.getLogger("urllib3").setLevel(logging.ERROR)
        try:
            k8sclient.CoreApi(self.client).get_api_versions()
            return True
        except (urllib3.exceptions.HTTPError, ApiException) as exc:
            raise TransientProbeError(f"API server not reachable: {exc}")
        finally:
            logging.getLogger("urllib3").setLevel(logging.WARNING)

    def felix_configuration_ready(self, name="default"):
        """Check if Calico created its FelixConfiguration.

        Returns:
            True if the resource exists, False if not (yet).

        Raises:
            TransientProbeError if the API server can't answer.
        """
        custom = k8sclient.CustomObjectsApi(self.client)
        try:
            custom.get_cluster_custom_object(CALICO_GROUP, CALICO_API_VERSION,
                                             "felixconfigurations", name)
        except ApiException as exc:
            if exc.status == 404:
                return False
            raise TransientProbeError(
                f"can't query FelixConfiguration {name}: {exc.reason}")
        except urllib3.exceptions.HTTPError as exc:
            raise TransientProbeError(f"API server not reachable: {exc}")
        return True

    def kubectl(self, *args, check=True, input_text=None):
        """Run kubectl against the cluster"""
        cmd = ["kubectl", f"--kubeconfig={self.config}"] + list(args)
        return self.host.run(cmd, check=check, input_text=input_text)

    def apply_url(self, url, server_side=False):
        """Apply the manifest at url"""
        args = ["apply"]
        if server_side:
            args.append("--server-side")
        args += ["-f", url]
        LOGGER.info("Applying %s ...", url)
        return self.kubectl(*args)

    def apply_documents(self, documents):
        """Apply a list of resources (dicts) via kubectl's STDIN"""
        manifest = yaml.safe_dump_all(documents, default_flow_style=False)
        LOGGER.debug("Applying:\n%s", manifest)
        return self.kubectl("apply", "-f", "-", input_text=manifest)

    def remove_control_plane_taint(self):
        """Allow workloads on the control plane nodes.

        Removing a taint which is not present is not an error.
        """
        proc = self.kubectl("taint", "nodes", "--all",
                            f"{CONTROL_PLANE_TAINT}-", check=False)
        if proc.returncode:
            LOGGER.debug("Taint not removed: %s", proc.stderr.strip())
        return proc.returncode == 0
