"""
Start, readiness-poll and stop of a single Nacos node process
"""
import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional, Set, Union

import psutil
import requests

from ..errors import NodeStartError, PasswordInitFailed, PortConflict, StartupTimeout
from ..interfaces import IPortProbe
from ..models import DEFAULT_ADMIN_PASSWORD, NodeDescriptor, NodeState, PortSet, ProcessHandle, major_version
from ..utils.java import JavaRuntime, runtime_options
from ..utils.polling import poll_until

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

PID_DISCOVERY_ATTEMPTS = 10
DEFAULT_READY_TIMEOUT = 60
DEFAULT_STOP_TIMEOUT = 10
LAUNCHER_TIMEOUT = 60


def readiness_url(ports: PortSet, version: str) -> str:
    if major_version(version) >= 3:
        return f"http://localhost:{ports.console}/v3/console/health/readiness"
    return f"http://localhost:{ports.main}/nacos/v2/console/health/readiness"


def admin_password_url(ports: PortSet, version: str) -> str:
    if major_version(version) >= 3:
        return f"http://localhost:{ports.console}/v3/auth/user/admin"
    return f"http://localhost:{ports.main}/nacos/v1/auth/users/admin"


def startup_command(node_dir: PathLike, mode: str, use_embedded_db: bool) -> list:
    cmd = ['bash', str(Path(node_dir) / 'bin' / 'startup.sh'), '-m', mode]
    if mode == 'cluster' and use_embedded_db:
        cmd.extend(['-p', 'embedded'])
    return cmd


def _references_dir(arg: str, targets: Set[str]) -> bool:
    # -Dnacos.home=<dir> style arguments carry the path after '='
    value = arg.split('=', 1)[1] if arg.startswith('-D') and '=' in arg else arg
    value = value.rstrip(os.sep) or value
    return any(value == target or value.startswith(target + os.sep) for target in targets)


class NodeLifecycle:
    """
    Owns the OS processes of started nodes.

    PROVISIONED -> STARTING -> READY -> STOPPING -> STOPPED, or
    PROVISIONED -> STARTING -> FAILED_TO_START.
    """

    def __init__(self, probe: Optional[IPortProbe] = None, java: Optional[JavaRuntime] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 pid_attempts: int = PID_DISCOVERY_ATTEMPTS,
                 request_timeout: float = 2.0):
        self.probe = probe
        self.java = java
        self.sleep = sleep
        self.pid_attempts = pid_attempts
        self.request_timeout = request_timeout

    def _launch_env(self) -> dict:
        env = os.environ.copy()
        if self.java is not None:
            env['JAVA_HOME'] = self.java.home
            opts = runtime_options(self.java)
            if opts:
                env['JAVA_OPT'] = opts
        return env

    def find_node_process(self, node_dir: PathLike) -> Optional[int]:
        """PID of the java process with an argument naming node_dir or a path inside it"""
        targets = {str(Path(node_dir)), str(Path(node_dir).resolve())}
        for proc in psutil.process_iter(['pid', 'cmdline']):
            cmdline = proc.info.get('cmdline') or []
            if not cmdline or 'java' not in ' '.join(cmdline):
                continue
            if any(_references_dir(arg, targets) for arg in cmdline):
                return proc.info['pid']
        return None

    def is_running(self, handle: Optional[ProcessHandle]) -> bool:
        if handle is None or handle.stopped:
            return False
        try:
            proc = psutil.Process(handle.pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            return psutil.pid_exists(handle.pid)

    def start(self, node_dir: PathLike, mode: str, use_embedded_db: bool = True) -> ProcessHandle:
        """Run the node's startup script and wait for its java process to appear"""
        node_dir = Path(node_dir)
        if not node_dir.is_dir():
            raise NodeStartError(f"Installation directory not found: {node_dir}")

        cmd = startup_command(node_dir, mode, use_embedded_db)
        logger.debug(f"Launching: {' '.join(cmd)}")
        try:
            subprocess.run(cmd, cwd=str(node_dir), env=self._launch_env(),
                           stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
                           timeout=LAUNCHER_TIMEOUT, check=False)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise NodeStartError(f"Failed to run startup script in {node_dir}: {e}")

        # The launcher backgrounds java, so the real PID has to be looked up
        pid = poll_until(lambda: self.find_node_process(node_dir), attempts=self.pid_attempts,
                         interval=1.0, sleep=self.sleep, sleep_first=True)
        if not pid:
            raise NodeStartError(
                f"Failed to start Nacos in {node_dir}",
                hint=f"Check the logs: {node_dir / 'logs' / 'start.out'}",
            )
        return ProcessHandle(pid=pid)

    def wait_until_ready(self, ports: PortSet, version: str, timeout: int = DEFAULT_READY_TIMEOUT) -> bool:
        """Poll the readiness endpoint once per second; False on timeout"""
        url = readiness_url(ports, version)

        def ready() -> bool:
            try:
                response = requests.get(url, timeout=self.request_timeout)
            except requests.RequestException:
                return False
            return 200 <= response.status_code < 300

        def waiting(elapsed: int) -> None:
            if elapsed % 10 == 0:
                logger.info(f"Waiting for Nacos to be ready... {elapsed}s")

        if poll_until(ready, attempts=max(int(timeout), 1), interval=1.0, sleep=self.sleep, on_wait=waiting):
            return True
        logger.warning(f"Nacos health check timeout after {timeout}s")
        return False

    def stop(self, handle: Optional[ProcessHandle], timeout: int = DEFAULT_STOP_TIMEOUT) -> bool:
        """SIGTERM, wait up to timeout seconds, then SIGKILL; True once the process is gone"""
        if handle is None or handle.stopped:
            return True
        if not self.is_running(handle):
            handle.stopped = True
            return True

        try:
            psutil.Process(handle.pid).terminate()
        except psutil.NoSuchProcess:
            handle.stopped = True
            return True
        except psutil.AccessDenied as e:
            logger.error(f"Not permitted to stop PID {handle.pid}: {e}")
            return False

        if poll_until(lambda: not self.is_running(handle), attempts=max(int(timeout), 1),
                      interval=1.0, sleep=self.sleep):
            logger.info(f"Process stopped gracefully (PID: {handle.pid})")
            handle.stopped = True
            return True

        logger.warning(f"Graceful shutdown timed out, force killing PID: {handle.pid}")
        return self.kill(handle)

    def kill(self, handle: ProcessHandle) -> bool:
        try:
            psutil.Process(handle.pid).kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.error(f"Not permitted to kill PID {handle.pid}: {e}")
            return False
        self.sleep(1)

        if self.is_running(handle):
            logger.error(f"Failed to stop process (PID: {handle.pid})")
            return False
        handle.stopped = True
        return True

    def stop_pid(self, pid: int) -> bool:
        return self.stop(ProcessHandle(pid=pid))

    def _post_admin_password(self, ports: PortSet, version: str, password: str) -> None:
        url = admin_password_url(ports, version)
        try:
            response = requests.post(url, data={'password': password}, timeout=self.request_timeout * 5)
        except requests.RequestException as e:
            raise PasswordInitFailed(f"Password API unreachable: {e}")
        if '"username"' not in response.text:
            raise PasswordInitFailed(
                f"Password API returned HTTP {response.status_code}",
                hint="Log in with the default credentials and change the password in the console",
            )

    def initialize_admin_password(self, ports: PortSet, version: str, password: str) -> bool:
        """Set the admin password through the HTTP API; failure is reported, never raised"""
        if not password or password == DEFAULT_ADMIN_PASSWORD:
            return True
        logger.info("Initializing admin password...")
        try:
            self._post_admin_password(ports, version, password)
        except PasswordInitFailed as e:
            logger.warning(f"Failed to initialize password automatically: {e.message}")
            if e.hint:
                logger.warning(e.hint)
            return False
        logger.info("Admin password initialized successfully")
        return True

    def start_node(self, node: NodeDescriptor, mode: str = 'cluster', use_embedded_db: bool = True,
                   ready_timeout: int = DEFAULT_READY_TIMEOUT) -> ProcessHandle:
        """
        Start one node and block until it is ready.

        On readiness timeout the process is force-killed, the node is marked
        FAILED_TO_START and StartupTimeout is raised.
        """
        ports = node.ports
        if self.probe is not None:
            if not self.probe.is_port_free(ports.main):
                node.state = NodeState.FAILED_TO_START
                raise PortConflict(ports.main, f"Port {ports.main} is already in use")
            if major_version(node.version) >= 3 and ports.console and not self.probe.is_port_free(ports.console):
                node.state = NodeState.FAILED_TO_START
                raise PortConflict(ports.console, f"Console port {ports.console} is already in use")

        logger.info(f"Starting node {node.name}")
        started_at = time.monotonic()
        node.state = NodeState.STARTING
        try:
            handle = self.start(node.directory, mode, use_embedded_db)
        except NodeStartError:
            node.state = NodeState.FAILED_TO_START
            raise
        node.process_handle = handle

        if self.wait_until_ready(ports, node.version, ready_timeout):
            node.state = NodeState.READY
            logger.info(f"Node {node.name} ready (PID: {handle.pid}, {time.monotonic() - started_at:.0f}s)")
            return handle

        logger.error(f"Node {node.name} startup timeout")
        self.kill(handle)
        node.state = NodeState.FAILED_TO_START
        raise StartupTimeout(node.name, ready_timeout)

    def stop_node(self, node: NodeDescriptor, timeout: int = DEFAULT_STOP_TIMEOUT) -> bool:
        if node.process_handle is None:
            return True
        node.state = NodeState.STOPPING
        stopped = self.stop(node.process_handle, timeout)
        node.state = NodeState.STOPPED if stopped else node.state
        return stopped
