"""
Monitoring agents
=================

Prometheus Node Exporter exposes host metrics, the OpenTelemetry Collector
ships journald logs and host metrics to a SigNoz endpoint. Both run as
systemd services configured through a handful of options in
``/etc/monitoring/config.env``.
"""
import io
import os
import tarfile
import textwrap
from urllib.error import URLError
from urllib.request import urlopen

import yaml

from kubestrap.orchestrate.errors import ActionFailure, TransientProbeError
from kubestrap.util.logger import Logger
from kubestrap.util.util import retry

LOGGER = Logger(__name__)

MONITORING_ENV = "/etc/monitoring/config.env"
OTELCOL_CONF = "/etc/otelcol/config.yaml"
SYSTEMD_DIR = "/etc/systemd/system"
BIN_DIR = "/usr/local/bin"

NODE_EXPORTER_URL = ("https://github.com/prometheus/node_exporter/releases/"
                     "download/v{version}/node_exporter-{version}."
                     "linux-amd64.tar.gz")
OTELCOL_URL = ("https://github.com/open-telemetry/"
               "opentelemetry-collector-releases/releases/download/"
               "v{version}/otelcol-contrib_{version}_linux_amd64.tar.gz")

ACTIONS = ("start", "stop", "restart", "status")


class MonitoringAgent:
    """A monitoring agent running as systemd service.

    Args:
        name (str): the agent's name, used on the command line.
        unit (str): the systemd unit name.
        binary (str): where the executable lives.
        port (int): the port the agent listens on, if any.
        url (str): the release tarball to install the binary from.
        member (str): the file name of the executable inside the tarball.
    """

    # pylint: disable=too-many-arguments
    def __init__(self, name, unit, binary, port=None, url=None, member=None):
        self.name = name
        self.unit = unit
        self.binary = binary
        self.port = port
        self.url = url
        self.member = member or os.path.basename(binary)

    def __repr__(self):
        return f"<MonitoringAgent {self.name}>"

    @property
    def unit_path(self):
        """The path of the systemd unit file"""
        return os.path.join(SYSTEMD_DIR, self.unit + ".service")

    def start(self, host):
        """Enable and start the agent"""
        host.systemctl("enable", self.unit)
        return host.systemctl("start", self.unit)

    def stop(self, host):
        """Stop the agent"""
        return host.systemctl("stop", self.unit)

    def restart(self, host):
        """Restart the agent, e.g. after changing config.env"""
        return host.systemctl("restart", self.unit)

    def status(self, host):
        """Return the output of ``systemctl status``"""
        proc = host.systemctl("status", self.unit, "--no-pager", "-l",
                              check=False)
        return proc.stdout

    def control(self, host, action):
        """Call one of start, stop, restart or status"""
        if action not in ACTIONS:
            raise ValueError("action must be one of %s" % ", ".join(ACTIONS))
        return getattr(self, action)(host)

    def is_installed(self, host):
        """True if the binary exists on the host"""
        return host.exists(self.binary)

    def install(self, host, sleep=None):
        """Install the binary from the release tarball.

        Args:
            host (Host): where to install.
            sleep: waits between download retries, see :func:`download`.
        """
        if self.is_installed(host):
            return False

        LOGGER.info("Installing %s from %s ...", self.name, self.url)
        data = download(self.url, sleep=sleep)
        content = extract_member(data, self.member)
        local = host.path(self.binary)
        os.makedirs(os.path.dirname(local), exist_ok=True)
        with open(local, "wb") as fh:
            fh.write(content)
        os.chmod(local, 0o755)
        return True


def download(url, timeout=60, sleep=None):
    """Fetch url and return the body, retrying on network errors.

    Args:
        sleep: waits between two tries. Pass ``ConvergencePoller.sleep`` to
            stop retrying once the run is cancelled.
    """
    @retry(URLError, tries=3, delay=2, logger=LOGGER.warning, sleep=sleep)
    def fetch():
        with urlopen(url, timeout=timeout) as resp:
            return resp.read()

    return fetch()


def extract_member(data, member):
    """Return the content of the file called member in a tar.gz archive.

    Raises:
        ActionFailure if the archive is broken or has no such file.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            for info in tar.getmembers():
                if info.isfile() and os.path.basename(info.name) == member:
                    return tar.extractfile(info).read()
    except tarfile.TarError as exc:
        raise ActionFailure(f"can't read the downloaded archive: {exc}")

    raise ActionFailure(f"{member} not found in the downloaded archive")


def get_agents(config):
    """Return the node exporter and the OpenTelemetry Collector agents"""
    monitoring = config['monitoring']
    node_exporter = MonitoringAgent(
        "node-exporter", "node_exporter",
        os.path.join(BIN_DIR, "node_exporter"),
        port=monitoring['node-exporter-port'],
        url=NODE_EXPORTER_URL.format(
            version=monitoring['node-exporter-version']))
    otelcol = MonitoringAgent(
        "otelcol", "otelcol",
        os.path.join(BIN_DIR, "otelcol"),
        url=OTELCOL_URL.format(version=monitoring['otelcol-version']),
        member="otelcol-contrib")
    return [node_exporter, otelcol]


def monitoring_env(monitoring):
    """The content of /etc/monitoring/config.env"""
    return textwrap.dedent("""\
        # Prometheus server endpoint for remote_write, leave empty to use
        # scrape mode against the node exporter port
        PROMETHEUS_REMOTE_WRITE_URL="{}"

        # SigNoz OTLP endpoint for logs and metrics
        SIGNOZ_ENDPOINT="{}"

        # Optional SigNoz API key
        SIGNOZ_API_KEY="{}"
        """).format(monitoring['prometheus-remote-write-url'],
                    monitoring['signoz-endpoint'],
                    monitoring['signoz-api-key'])


def node_exporter_unit(agent):
    """The systemd unit of the node exporter"""
    return textwrap.dedent("""\
        [Unit]
        Description=Prometheus Node Exporter
        After=network.target

        [Service]
        Type=simple
        User=nobody
        Group=nogroup
        ExecStart={binary} \\
          --web.listen-address=0.0.0.0:{port} \\
          --collector.filesystem.mount-points-exclude="^/(sys|proc|dev|host|etc)($$|/)"
        Restart=always
        RestartSec=5

        [Install]
        WantedBy=multi-user.target
        """).format(binary=agent.binary, port=agent.port)


def otelcol_unit(agent):
    """The systemd unit of the OpenTelemetry Collector"""
    return textwrap.dedent("""\
        [Unit]
        Description=OpenTelemetry Collector
        After=network.target

        [Service]
        Type=simple
        User=otelcol
        Group=otelcol
        EnvironmentFile={env}
        ExecStart={binary} --config={config}
        Restart=always
        RestartSec=5
        StandardOutput=journal
        StandardError=journal

        [Install]
        WantedBy=multi-user.target
        """).format(env=MONITORING_ENV, binary=agent.binary,
                    config=OTELCOL_CONF)


def otelcol_config(monitoring):
    """The OpenTelemetry Collector configuration as dict.

    Journald logs and host metrics, plus the local node exporter and
    kubelet container metrics, are exported via OTLP/HTTP to SigNoz.
    """
    exporter = {'endpoint': monitoring['signoz-endpoint'],
                'tls': {'insecure': True}}
    if monitoring['signoz-api-key']:
        exporter['headers'] = {'signoz-api-key': monitoring['signoz-api-key']}

    scrape_configs = [
        {'job_name': 'node-exporter',
         'static_configs': [{'targets': [
             'localhost:%d' % monitoring['node-exporter-port']]}]},
        {'job_name': 'kubelet',
         'static_configs': [{'targets': ['localhost:10255']}],
         'metric_relabel_configs': [{'source_labels': ['__name__'],
                                     'regex': 'container_.*',
                                     'action': 'keep'}]},
    ]
    scrapers = ['cpu', 'disk', 'load', 'filesystem', 'memory', 'network',
                'paging', 'process']

    processors = ['batch', 'resource']
    return {
        'receivers': {
            'journald': {'directory': '/var/log/journal', 'units': [],
                         'priority': 'info'},
            'hostmetrics': {'collection_interval': '30s',
                            'scrapers': {name: {} for name in scrapers}},
            'prometheus': {'config': {'scrape_configs': scrape_configs}},
        },
        'processors': {
            'batch': {'timeout': '10s', 'send_batch_size': 1024},
            'resource': {'attributes': [
                {'key': 'host.name', 'from_attribute': 'host.name',
                 'action': 'upsert'},
                {'key': 'service.name', 'value': 'k8s-node',
                 'action': 'upsert'}]},
        },
        'exporters': {'otlphttp': exporter},
        'service': {'pipelines': {
            'logs': {'receivers': ['journald'], 'processors': processors,
                     'exporters': ['otlphttp']},
            'metrics': {'receivers': ['hostmetrics', 'prometheus'],
                        'processors': processors,
                        'exporters': ['otlphttp']},
        }},
    }


def ensure_service_user(host, user):
    """Create a system user for an agent unless it exists"""
    if not host.succeeds(["id", "-u", user]):
        host.run(["useradd", "-r", "-s", "/bin/false", user])


def install_monitoring(context):
    """Action of the ``monitoring-agents`` phase"""
    host, monitoring = context.host, context.config['monitoring']
    node_exporter, otelcol = get_agents(context.config)

    changed = host.write_file(MONITORING_ENV, monitoring_env(monitoring),
                              0o600)
    changed |= host.write_file(node_exporter.unit_path,
                               node_exporter_unit(node_exporter))
    changed |= host.write_file(otelcol.unit_path, otelcol_unit(otelcol))
    changed |= host.write_file(OTELCOL_CONF,
                               yaml.safe_dump(otelcol_config(monitoring),
                                              default_flow_style=False),
                               0o644)

    for agent in (node_exporter, otelcol):
        changed |= agent.install(host, sleep=context.poller.sleep)

    ensure_service_user(host, "otelcol")
    host.systemctl("daemon-reload")
    for agent in (node_exporter, otelcol):
        agent.start(host)
        if changed:
            agent.restart(host)

    LOGGER.success("Node Exporter metrics available on port %d",
                   node_exporter.port)
    LOGGER.success("OpenTelemetry Collector ships to %s",
                   monitoring['signoz-endpoint'])


def node_exporter_ready(port, timeout=5):
    """Return a readiness predicate for the node exporter"""
    url = f"http://127.0.0.1:{port}/metrics"

    def node_exporter_metrics():
        try:
            with urlopen(url, timeout=timeout) as resp:
                return resp.status == 200
        except OSError as exc:
            raise TransientProbeError(f"{url}: {exc}")
    return node_exporter_metrics
