"""
Remote execution abstraction.

A Target is the single place commands run and files are copied to. Two
implementations exist: ContainerTarget (docker exec / docker cp) and
HostTarget (paramiko exec channel / SFTP). Downstream code only ever sees
Target.
"""

import codecs
import logging
import os
import posixpath
import shlex
import signal
import socket
import stat
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, TextIO

import paramiko

from orchestrator.src.backends.script_builder import (
    build_invocation,
    build_script,
    build_script_path,
)
from orchestrator.src.errors import RemoteCommandError
from orchestrator.src.models.run import KILLED_RC

logger = logging.getLogger(__name__)

# Extra time given to the remote `timeout` before the local side gives up
KILL_GRACE = 10

# Exit status when an SSH session ends without one, same as the ssh client
SSH_FAILURE_RC = 255

POLL_INTERVAL = 0.5

def _write(sinks: Sequence[TextIO], text: str):
    if not text:
        return
    for sink in sinks:
        sink.write(text)
        sink.flush()

def _pump(stream, sinks: Sequence[TextIO]):
    for raw in iter(stream.readline, b""):
        _write(sinks, raw.decode("utf-8", errors="replace"))
    stream.close()

def run_command(
    argv: List[str],
    timeout: Optional[float] = None,
    output: Sequence[TextIO] = (),
    stdin_data: Optional[bytes] = None,
) -> int:
    """
    Run argv locally in its own process group, streaming merged
    stdout/stderr into every sink. If the timeout elapses the whole group
    gets SIGKILL and KILLED_RC is returned.
    """
    logger.debug(f"Running: {' '.join(shlex.quote(a) for a in argv)}")

    proc = subprocess.Popen(
        argv,
        stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        start_new_session=True,
    )

    reader = threading.Thread(target=_pump, args=(proc.stdout, list(output)), daemon=True)
    reader.start()

    if stdin_data is not None:
        try:
            proc.stdin.write(stdin_data)
        except BrokenPipeError:
            pass
        proc.stdin.close()

    try:
        returncode = proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"Command exceeded {timeout:.0f}s, killing process group {proc.pid}")
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()
        returncode = KILLED_RC

    reader.join(timeout=5)

    if returncode < 0:
        # killed by a signal locally
        returncode = 128 - returncode
    return returncode

def capture_command(argv: List[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run argv locally and capture its output."""
    logger.debug(f"Running: {' '.join(shlex.quote(a) for a in argv)}")
    return subprocess.run(argv, capture_output=True, text=True, timeout=timeout, check=False)

class Target(ABC):
    """A controlled environment commands run in."""

    name: str
    kill_grace: float = KILL_GRACE

    def exec(
        self,
        command: str,
        timeout: Optional[float] = None,
        output: Sequence[TextIO] = (),
        env: Optional[Dict[str, str]] = None,
        workdir: Optional[str] = None,
    ) -> int:
        """
        Run a shell command line in the environment and return its exit
        code. With a finite timeout the command is killed with SIGKILL when
        it elapses and KILLED_RC is returned. The timeout also bounds the
        upload of the wrapper script.
        """
        script_path = build_script_path()
        try:
            self.write_file(script_path, build_script(command, env=env, workdir=workdir), timeout=timeout)
        except RemoteCommandError as e:
            if e.returncode != KILLED_RC:
                raise
            logger.error(str(e))
            return KILLED_RC

        return self.run_argv(build_invocation(script_path, timeout), timeout=timeout, output=output)

    def check(self, command: str, output: Sequence[TextIO] = (), **kwargs):
        """Like exec(), but raise RemoteCommandError on failure."""
        returncode = self.exec(command, output=output, **kwargs)
        if returncode != 0:
            raise RemoteCommandError(
                f"'{command}' failed on {self.name} with code {returncode}",
                returncode,
            )

    def exists(self, path: str) -> bool:
        return self.exec(f"test -e {shlex.quote(path)}") == 0

    def close(self):
        """Release any connection held to the environment."""

    @abstractmethod
    def run_argv(self, remote_argv: List[str], timeout: Optional[float] = None, output: Sequence[TextIO] = ()) -> int:
        """
        Run remote_argv in the environment. The local side gives up
        kill_grace seconds after timeout and returns KILLED_RC.
        """

    @abstractmethod
    def write_file(self, path: str, content: str, timeout: Optional[float] = None):
        """
        Write content to a file in the environment. Raises
        RemoteCommandError with KILLED_RC if the timeout elapses.
        """

    @abstractmethod
    def copy(self, src: str, dest: str):
        """
        Copy a local file or directory into the environment. A directory's
        contents land in dest (like `cp -r src/. dest`); a file is written
        to dest.
        """

    @abstractmethod
    def fetch(self, src: str, dest_dir: str):
        """Copy a remote file or directory into the local directory dest_dir."""

class ContainerTarget(Target):
    """
    A long-running container. Destination directories for copy() must
    already exist.
    """

    def __init__(self, container_id: str, runtime: str = "docker"):
        self.container_id = container_id
        self.runtime = runtime
        self.name = container_id[:12]

    def exec_argv(self, remote_argv: List[str]) -> List[str]:
        return [self.runtime, "exec", self.container_id] + list(remote_argv)

    def run_argv(self, remote_argv: List[str], timeout: Optional[float] = None, output: Sequence[TextIO] = ()) -> int:
        local_timeout = timeout + self.kill_grace if timeout is not None else None
        return run_command(self.exec_argv(remote_argv), timeout=local_timeout, output=output)

    def write_file(self, path: str, content: str, timeout: Optional[float] = None):
        argv = [self.runtime, "exec", "-i", self.container_id, "sh", "-c", f"cat > {shlex.quote(path)}"]
        returncode = run_command(argv, timeout=timeout, stdin_data=content.encode())
        if returncode != 0:
            raise RemoteCommandError(f"Failed to write {path} in container {self.name}", returncode)

    def copy(self, src: str, dest: str):
        source = os.path.join(src, ".") if os.path.isdir(src) else src
        result = capture_command([self.runtime, "cp", source, f"{self.container_id}:{dest}"])
        if result.returncode != 0:
            raise RemoteCommandError(
                f"Failed to copy {src} to {self.name}:{dest}: {result.stderr.strip()}",
                result.returncode,
            )

    def fetch(self, src: str, dest_dir: str):
        result = capture_command([self.runtime, "cp", f"{self.container_id}:{src}", dest_dir])
        if result.returncode != 0:
            raise RemoteCommandError(
                f"Failed to fetch {self.name}:{src}: {result.stderr.strip()}",
                result.returncode,
            )

class HostTarget(Target):
    """
    A node reached over SSH with paramiko. Commands run on an exec
    channel, files go over SFTP. copy() creates missing destination
    directories. The connection is opened lazily and reused.
    """

    def __init__(
        self,
        address: str,
        key: Optional[str] = None,
        user: str = "root",
        name: Optional[str] = None,
        connect_timeout: float = 10,
    ):
        self.address = address
        self.key = key
        self.user = user
        self.name = name or address
        self.connect_timeout = connect_timeout
        self._client: Optional[paramiko.SSHClient] = None

    def connect(self) -> paramiko.SSHClient:
        """Return the live SSH connection, opening a new one if needed."""
        if self._client is not None:
            transport = self._client.get_transport()
            if transport is not None and transport.is_active():
                return self._client
            self.close()

        client = paramiko.SSHClient()
        # nodes are freshly booted, their host keys are unknown
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.address,
                username=self.user,
                key_filename=self.key,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=self.key is None,
                look_for_keys=self.key is None,
            )
        except BaseException:
            client.close()
            raise

        self._client = client
        return client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def run_argv(self, remote_argv: List[str], timeout: Optional[float] = None, output: Sequence[TextIO] = ()) -> int:
        # the exec channel hands a single string to the remote shell
        command = " ".join(shlex.quote(a) for a in remote_argv)
        logger.debug(f"Running on {self.name}: {command}")

        try:
            channel = self.connect().get_transport().open_session()
            channel.set_combine_stderr(True)
            channel.settimeout(POLL_INTERVAL)
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"Could not start command on {self.name}: {e}")
            return SSH_FAILURE_RC

        deadline = time.monotonic() + timeout + self.kill_grace if timeout is not None else None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

        try:
            while True:
                if deadline is not None and time.monotonic() >= deadline:
                    logger.warning(f"Command on {self.name} exceeded {timeout:.0f}s, closing the channel")
                    return KILLED_RC
                try:
                    data = channel.recv(32768)
                except socket.timeout:
                    continue
                if not data:
                    break
                _write(output, decoder.decode(data))
            _write(output, decoder.decode(b"", final=True))

            while not channel.exit_status_ready():
                transport = channel.get_transport()
                if transport is None or not transport.is_active():
                    logger.error(f"Lost connection to {self.name}")
                    return SSH_FAILURE_RC
                if deadline is not None and time.monotonic() >= deadline:
                    return KILLED_RC
                time.sleep(POLL_INTERVAL)

            returncode = channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            logger.error(f"Lost connection to {self.name}: {e}")
            return SSH_FAILURE_RC
        finally:
            channel.close()

        return returncode if returncode >= 0 else SSH_FAILURE_RC

    def _sftp(self, timeout: Optional[float] = None) -> paramiko.SFTPClient:
        sftp = self.connect().open_sftp()
        if timeout is not None:
            sftp.get_channel().settimeout(max(timeout, 1))
        return sftp

    def write_file(self, path: str, content: str, timeout: Optional[float] = None):
        try:
            sftp = self._sftp(timeout)
            try:
                with sftp.open(path, "w") as f:
                    f.write(content)
            finally:
                sftp.close()
        except socket.timeout:
            # the session is in an unknown state
            self.close()
            raise RemoteCommandError(f"Timed out writing {path} on {self.name}", KILLED_RC)
        except (paramiko.SSHException, OSError) as e:
            raise RemoteCommandError(f"Failed to write {path} on {self.name}: {e}")

    def copy(self, src: str, dest: str):
        is_dir = os.path.isdir(src)
        dest_dir = dest if is_dir else (posixpath.dirname(dest) or ".")
        self.check(f"mkdir -p {shlex.quote(dest_dir)}")

        try:
            sftp = self._sftp()
            try:
                if is_dir:
                    self._put_dir(sftp, src, dest)
                else:
                    self._put(sftp, src, dest)
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteCommandError(f"Failed to copy {src} to {self.name}:{dest}: {e}")

    def _put(self, sftp: paramiko.SFTPClient, local: str, remote: str):
        sftp.put(local, remote)
        # SFTP does not carry permissions, and scripts like autogen.sh need them
        sftp.chmod(remote, stat.S_IMODE(os.stat(local).st_mode))

    def _put_dir(self, sftp: paramiko.SFTPClient, local_dir: str, remote_dir: str):
        for entry in sorted(os.scandir(local_dir), key=lambda e: e.name):
            remote = posixpath.join(remote_dir, entry.name)
            if entry.is_symlink():
                sftp.symlink(os.readlink(entry.path), remote)
            elif entry.is_dir():
                try:
                    sftp.mkdir(remote)
                except IOError:
                    pass  # already exists
                self._put_dir(sftp, entry.path, remote)
            else:
                self._put(sftp, entry.path, remote)

    def fetch(self, src: str, dest_dir: str):
        src = src.rstrip("/")
        try:
            sftp = self._sftp()
            try:
                self._get(sftp, src, os.path.join(dest_dir, posixpath.basename(src)))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteCommandError(f"Failed to fetch {self.name}:{src}: {e}")

    def _get(self, sftp: paramiko.SFTPClient, remote: str, local: str):
        if stat.S_ISDIR(sftp.stat(remote).st_mode):
            os.makedirs(local, exist_ok=True)
            for attr in sftp.listdir_attr(remote):
                self._get(sftp, posixpath.join(remote, attr.filename), os.path.join(local, attr.filename))
        else:
            sftp.get(remote, local)

    def wait_until_reachable(self, timeout: float = 300, interval: float = 5):
        """Block until SSH answers, or raise RemoteCommandError."""
        deadline = time.monotonic() + timeout
        while True:
            self.close()
            try:
                self.connect()
                logger.info(f"{self.name} is reachable over SSH")
                return
            except (paramiko.SSHException, OSError) as e:
                if time.monotonic() >= deadline:
                    raise RemoteCommandError(f"Timed out waiting for SSH on {self.name}: {e}")
                logger.debug(f"{self.name} not reachable yet: {e}")
            time.sleep(interval)

    def reboot(self, timeout: float = 300):
        """Reboot the node and wait for it to come back."""
        logger.info(f"Rebooting {self.name}")
        # the connection drops, so the exit code is meaningless
        self.exec("systemctl reboot", timeout=30)
        self.close()
        time.sleep(10)
        self.wait_until_reachable(timeout)
