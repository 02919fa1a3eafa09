"""
State
=====

Durable record of the bootstrap phases.

Every phase gets one YAML file ``<phase id>.yml`` inside the state directory,
for example ``/var/lib/kubestrap/state/control-plane-init.yml``:

.. code:: yaml

    phase: control-plane-init
    status: Succeeded
    timestamp: '2026-10-19T12:40:03.184218+00:00'
    error: null
    attempts: 1

Removing a file (or the whole directory) makes the next run execute the
phase again.

Records are written to a temporary file first, synced and then renamed
over the old record. A file which can't be parsed is treated as missing,
thus a torn write is never read back as Succeeded.
"""
import os
import tempfile
from datetime import datetime, timezone

import yaml

from kubestrap.util.logger import Logger

from .errors import StoreUnavailable
from .graph import PhaseStatus

LOGGER = Logger(__name__)

RECORD_SUFFIX = ".yml"
TMP_PREFIX = ".tmp-"


def _now():
    return datetime.now(timezone.utc).isoformat()


class ExecutionRecord:  # pylint: disable=too-few-public-methods
    """The persisted state of a phase.

    Args:
        phase_id (str): the phase identifier.
        status (PhaseStatus): the last known status.
        timestamp (str): ISO-8601 time of the last update.
        error (str): the last error message, if any.
        attempts (int): the number of action attempts of the last run.
    """

    def __init__(self, phase_id, status, timestamp=None, error=None,
                 attempts=0):
        self.phase_id = phase_id
        self.status = status
        self.timestamp = timestamp or _now()
        self.error = error
        self.attempts = attempts

    @property
    def succeeded(self):
        """True if the phase finished successfully"""
        return self.status == PhaseStatus.SUCCEEDED

    def as_dict(self):
        """Serializable representation"""
        return {'phase': self.phase_id,
                'status': self.status.value,
                'timestamp': self.timestamp,
                'error': self.error,
                'attempts': self.attempts}

    @classmethod
    def from_dict(cls, data):
        """Create a record from a loaded YAML document.

        Raises:
            ValueError if data is not a complete record.
        """
        if not isinstance(data, dict):
            raise ValueError("record is not a mapping")

        try:
            return cls(str(data['phase']),
                       PhaseStatus(data['status']),
                       timestamp=str(data['timestamp']),
                       error=data.get('error'),
                       attempts=int(data.get('attempts') or 0))
        except KeyError as exc:
            raise ValueError(f"record is missing {exc}")
        except TypeError as exc:
            raise ValueError(f"malformed record: {exc}")

    def __eq__(self, other):
        if not isinstance(other, ExecutionRecord):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def __repr__(self):
        return "<ExecutionRecord %s %s attempts=%d>" % (
            self.phase_id, self.status.value, self.attempts)


class StateStore:
    """Persist :class:`ExecutionRecord` objects in a directory.

    The store is the only writer of the directory. Every write is
    synchronous and either completes or raises :class:`StoreUnavailable`.

    Args:
        path (str): the state directory, created on first use.
    """

    def __init__(self, path):
        self.path = path

    def _record_path(self, phase_id):
        if not phase_id or os.sep in phase_id or phase_id.startswith("."):
            raise ValueError(f"invalid phase id '{phase_id}'")
        return os.path.join(self.path, phase_id + RECORD_SUFFIX)

    def _ensure_dir(self):
        try:
            os.makedirs(self.path, mode=0o700, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(
                f"can't create state directory {self.path}: {exc}")

    def _write(self, record):
        self._ensure_dir()
        target = self._record_path(record.phase_id)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=TMP_PREFIX,
                                            suffix=RECORD_SUFFIX,
                                            dir=self.path)
            with os.fdopen(fd, "w") as fh:
                yaml.safe_dump(record.as_dict(), fh, default_flow_style=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, target)
            tmp_name = None
            self._sync_dir()
        except OSError as exc:
            raise StoreUnavailable(
                f"can't write state of {record.phase_id} to {target}: {exc}")
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        LOGGER.debug("Recorded %s", record)
        return record

    def _sync_dir(self):
        """Persist the rename itself"""
        if not hasattr(os, "O_DIRECTORY"):
            return
        fd = os.open(self.path, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

    def record_start(self, phase_id):
        """Mark a phase as Running.

        The attempt count of a previous run is kept until the result is
        recorded.
        """
        previous = self.get(phase_id)
        attempts = previous.attempts if previous else 0
        return self._write(ExecutionRecord(phase_id, PhaseStatus.RUNNING,
                                           attempts=attempts))

    def record_result(self, phase_id, outcome, attempts=1):
        """Store the final outcome of a phase.

        Args:
            phase_id (str): the phase identifier.
            outcome (:class:`kubestrap.orchestrate.executor.Outcome`)
            attempts (int): the number of attempts made.
        """
        status = PhaseStatus.SUCCEEDED if outcome.ok else PhaseStatus.FAILED
        return self._write(ExecutionRecord(phase_id, status,
                                           error=outcome.reason,
                                           attempts=attempts))

    def _read(self, filename):
        path = os.path.join(self.path, filename)
        try:
            with open(path) as fh:
                data = yaml.safe_load(fh)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(f"can't read {path}: {exc}")
        except yaml.YAMLError as exc:
            LOGGER.warning("Ignoring unreadable state file %s: %s", path, exc)
            return None

        try:
            record = ExecutionRecord.from_dict(data)
        except ValueError as exc:
            LOGGER.warning("Ignoring incomplete state file %s: %s", path, exc)
            return None

        if record.phase_id + RECORD_SUFFIX != filename:
            LOGGER.warning("Ignoring state file %s, it belongs to %s", path,
                           record.phase_id)
            return None

        return record

    def get(self, phase_id):
        """Return the record of a phase or None"""
        if not os.path.isdir(self.path):
            return None
        return self._read(os.path.basename(self._record_path(phase_id)))

    def load(self):
        """Read all records.

        Returns:
            dict of phase id to :class:`ExecutionRecord`.

        Raises:
            StoreUnavailable if the directory can't be read.
        """
        if not os.path.exists(self.path):
            LOGGER.debug("No state found in %s", self.path)
            return {}

        try:
            names = sorted(os.listdir(self.path))
        except OSError as exc:
            raise StoreUnavailable(f"can't read state directory {self.path}: "
                                   f"{exc}")

        records = {}
        for name in names:
            if name.startswith(TMP_PREFIX) or not name.endswith(RECORD_SUFFIX):
                continue
            record = self._read(name)
            if record:
                records[record.phase_id] = record

        return records

    def reset(self, phase_id=None):
        """Forget one phase or, without phase_id, all phases.

        Returns:
            list of the phase ids which were removed.
        """
        if phase_id:
            phase_ids = [phase_id]
        else:
            phase_ids = list(self.load())

        removed = []
        for pid in phase_ids:
            try:
                os.unlink(self._record_path(pid))
                removed.append(pid)
            except FileNotFoundError:
                LOGGER.debug("No state recorded for %s", pid)
            except OSError as exc:
                raise StoreUnavailable(f"can't remove state of {pid}: {exc}")

        return removed
