"""
Access to the node the bootstrap runs on.

All side effects of the installers (commands, files, ownership) go through
a :class:`Host`, so the bootstrap steps can be exercised in tests against
an in-memory replacement.
"""
import os
import pwd
import shutil
import subprocess as sp
import tempfile

from kubeboot.errors import CommandError
from kubeboot.util.logger import Logger

LOGGER = Logger(__name__)


def _text(output):
    """Output of a killed process, which subprocess leaves undecoded"""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output or ""


class Host:
    """Run commands and manage files on the local machine.

    Args:
        env (dict): variables added to the environment of every command
    """

    def __init__(self, env=None):
        self.env = dict(env or {})

    def run(self, cmd, check=True, stdin=None, env=None, timeout=None):
        """Run ``cmd`` and capture its output.

        Args:
            cmd (list): the command and its arguments
            check (bool): raise if the exit status is not zero
            stdin (str): text passed to the standard input
            env (dict): additional environment variables
            timeout (int): seconds after which the command is killed

        Returns:
            :class:`subprocess.CompletedProcess` with text output

        Raises:
            CommandError
        """
        cmd = [str(c) for c in cmd]
        environ = dict(os.environ, **self.env, **(env or {}))
        LOGGER.debug("Running: %s", " ".join(cmd))
        try:
            proc = sp.run(cmd,
                          input=stdin,
                          env=environ,
                          encoding="utf-8",
                          stdout=sp.PIPE,
                          stderr=sp.PIPE,
                          timeout=timeout,
                          check=False)
        except FileNotFoundError as exc:
            raise CommandError(f"'{cmd[0]}' not found", returncode=127,
                               stderr=str(exc))
        except sp.TimeoutExpired as exc:
            raise CommandError("'%s' timed out after %ss" % (" ".join(cmd),
                                                            timeout),
                               stderr=_text(exc.stderr))

        LOGGER.debug("STDOUT: %s (Exit code %s)", proc.stdout,
                     proc.returncode)
        if check and proc.returncode:
            raise CommandError("'%s' failed" % " ".join(cmd),
                               returncode=proc.returncode,
                               stderr=proc.stderr or proc.stdout)
        return proc

    def download(self, url, dest):
        """Fetch ``url`` to the file ``dest``"""
        self.run(["curl", "-fsSL", "--retry", "5", "-o", dest, url])

    def write_file(self, path, content, mode=0o644, owner=None, group=None):
        """Write ``content`` to ``path``, creating parent directories.

        The permission bits are set before any content is written, so a
        secret never sits in a world readable file.
        """
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            os.chmod(path, mode)
            with os.fdopen(fd, "w") as fh:
                fh.write(content)
            if owner or group:
                shutil.chown(path, owner, group)
        except (OSError, LookupError) as exc:
            raise CommandError(f"can't write {path}: {exc}")

    def read_file(self, path):
        """Return the content of ``path``"""
        try:
            with open(path) as fh:
                return fh.read()
        except OSError as exc:
            raise CommandError(f"can't read {path}: {exc}")

    def exists(self, path):
        """Check if ``path`` exists"""
        return os.path.exists(path)

    def remove(self, path):
        """Delete ``path``, a missing file is ignored"""
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def mktemp(self, suffix=".yaml"):
        """Create an empty temporary file readable only by the owner"""
        fd, path = tempfile.mkstemp(prefix="kubeboot-", suffix=suffix)
        os.close(fd)
        return path

    def home_dir(self, user):
        """Return the home directory of ``user``"""
        try:
            return pwd.getpwnam(user).pw_dir
        except KeyError:
            raise CommandError(f"user '{user}' does not exist")

    def stat(self, path):
        """Return ``(mode, owner)`` of ``path``"""
        st = os.stat(path)
        return st.st_mode & 0o777, pwd.getpwuid(st.st_uid).pw_name
