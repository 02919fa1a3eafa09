"""
Host
====

The command and file surface the bootstrap phases act on.

All paths are absolute paths on the target machine. ``root`` allows to
redirect file operations into another directory, e.g. an image being
prepared or a temporary directory in tests.
"""
import os
import shutil
import subprocess as sp
import tempfile

from kubestrap.orchestrate.errors import CommandError
from kubestrap.util.logger import Logger

LOGGER = Logger(__name__)


class Host:
    """Run commands and write files on the local machine.

    Args:
        root (str): prefix for all file operations.
    """

    def __init__(self, root="/"):
        self.root = root

    def path(self, path):
        """Translate an absolute target path into a local path"""
        return os.path.join(self.root, path.lstrip("/"))

    def run(self, cmd, check=True, input_text=None):
        """Run a command and return its output.

        Args:
            cmd (list): the command and its arguments.
            check (bool): raise CommandError on a non zero exit code.
            input_text (str): written to the command's STDIN.

        Returns:
            :class:`subprocess.CompletedProcess`

        Raises:
            CommandError if check is True and the command failed or the
            executable doesn't exist.
        """
        LOGGER.debug("Running: %s", " ".join(cmd))

        try:
            proc = sp.run(cmd,
                          check=False,
                          encoding="utf-8",
                          input=input_text,
                          stdout=sp.PIPE,
                          stderr=sp.PIPE)
        except FileNotFoundError:
            if check:
                raise CommandError(cmd, 127, f"{cmd[0]}: command not found")
            return sp.CompletedProcess(cmd, 127, stdout="",
                                       stderr=f"{cmd[0]}: command not found")

        LOGGER.debug("STDOUT: %s (Exit code %s)", proc.stdout.strip(),
                     proc.returncode)
        if check and proc.returncode:
            raise CommandError(cmd, proc.returncode, proc.stderr)

        return proc

    def succeeds(self, cmd):
        """True if cmd exits with 0"""
        return self.run(cmd, check=False).returncode == 0

    def which(self, binary):
        """Return the full path of binary or None"""
        return shutil.which(binary)

    def exists(self, path):
        """Check if a file exists on the host"""
        return os.path.exists(self.path(path))

    def read_file(self, path):
        """Return the content of a file or None if it doesn't exist"""
        try:
            with open(self.path(path)) as fh:
                return fh.read()
        except FileNotFoundError:
            return None

    def write_file(self, path, content, mode=0o644):
        """Write content to path unless it already has this content.

        The file is written to a temporary file first and then renamed.

        Args:
            path (str): absolute path on the host.
            content (str): the file content.
            mode (int): the permissions, e.g. 0o600.

        Returns:
            True if the file was changed.
        """
        if self.read_file(path) == content:
            os.chmod(self.path(path), mode)
            return False

        LOGGER.debug("Writing %s", path)
        target = self.path(path)
        directory = os.path.dirname(target)
        os.makedirs(directory, exist_ok=True)

        fd, tmp = tempfile.mkstemp(dir=directory,
                                   prefix=f".{os.path.basename(target)}.")
        try:
            with os.fdopen(fd, "w") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

        return True

    def copy_file(self, src, dst, mode=0o644):
        """Copy src to dst on the host.

        Returns:
            True if dst was changed.

        Raises:
            FileNotFoundError if src doesn't exist.
        """
        content = self.read_file(src)
        if content is None:
            raise FileNotFoundError(f"{src} doesn't exist")

        return self.write_file(dst, content, mode)

    def systemctl(self, *args, check=True):
        """Run ``systemctl`` with args"""
        return self.run(["systemctl", *args], check=check)

    def is_active(self, unit):
        """True if the systemd unit is active"""
        return self.systemctl("is-active", "--quiet", unit,
                              check=False).returncode == 0
