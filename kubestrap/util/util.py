"""
General purpose utilities
"""
import re
import time

from functools import wraps

from kubestrap.orchestrate.errors import ConfigError


def name_validation(name):
    """
    Validates a cluster name.
    Each name should conform to the following convention:
    not too long (maximum 244 characters)
    only ASCII-letters, numbers and dashes

    Args:
        name (str): The name to be checked

    Returns:
        The name if valid.

    Raises:
        ConfigError if the name is invalid.
    """
    if not isinstance(name, str) or not name:
        raise ConfigError("cluster-name can't be empty")
    if len(name) > 244:
        raise ConfigError("cluster-name is too long")
    allowed = re.compile(r"^[a-zA-Z\d-]+$")
    if not allowed.match(name):
        raise ConfigError(f"cluster-name '{name}' is using illegal "
                          "characters. Please change cluster-name in "
                          "config file")
    return name


def k8s_version_validation(version):
    """Checks that version looks like ``X.Y.Z``.

    Args:
        version (str): a Kubernetes version without a leading ``v``.

    Returns:
        bool
    """
    if not isinstance(version, str):
        return False

    return bool(re.match(r"^\d+\.\d+\.\d+$", version))


def retry(exceptions, tries=4, delay=3, backoff=2, logger=None, sleep=None):
    """
    Retry calling the decorated function using an exponential backoff.

    Args:
        exceptions: The exception to check. may be a tuple of exceptions to check.
        tries: Number of times to try (not retry) before giving up.
        delay: Initial delay between retries in seconds.
        backoff: Backoff multiplier (e.g. value of 2 will double the delay each retry).
        logger: Logger to use. If None, print.
        sleep: called with the delay between two tries, time.sleep if None.
    """
    def deco_retry(f):  # pylint: disable=invalid-name

        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:  # pylint: disable=invalid-name
                    msg = '{}, Retrying in {} seconds...'.format(e,
                                                                 int(mdelay))
                    if logger:
                        logger(msg)
                    (sleep or time.sleep)(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)

        return f_retry  # true decorator

    return deco_retry


def deep_merge(base, override):
    """Return a copy of base updated recursively with override.

    Nested dicts are merged, every other value in override replaces the
    one in base.
    """
    merged = dict(base)
    for key, val in (override or {}).items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], val)
        else:
            merged[key] = val
    return merged
