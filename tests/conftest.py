"""
Shared fakes for the OS-facing collaborators
"""
from pathlib import Path

import pytest

from nacos_setup.cluster_orchestrator.lifecycle import NodeLifecycle
from nacos_setup.interfaces import IPackageManager, IPortProbe
from nacos_setup.models import ProcessHandle

BASE_PROPERTIES = """# Nacos application properties
server.servlet.contextPath=/nacos
#nacos.core.auth.enabled=false
nacos.core.auth.plugin.nacos.token.secret.key=
"""


class FakeProbe(IPortProbe):
    """Port probe with an explicit set of busy ports"""

    def __init__(self, busy=(), owners=None, managed=(), all_busy=False):
        self.busy = set(busy)
        self.owners = dict(owners or {})
        self.managed = set(managed)
        self.all_busy = all_busy

    def is_port_free(self, port):
        return not self.all_busy and port not in self.busy

    def owner_of_port(self, port):
        return self.owners.get(port)

    def is_managed_process(self, pid):
        return pid in self.managed


class FakePackageManager(IPackageManager):
    """Materialises a minimal nacos/ tree instead of downloading"""

    def __init__(self, properties=BASE_PROPERTIES):
        self.properties = properties
        self.fetched = []
        self.extracted = []

    def fetch(self, version):
        self.fetched.append(version)
        return Path(f"/cache/nacos-server-{version}.zip")

    def extract_to(self, archive, parent_dir, name):
        target = Path(parent_dir) / name
        (target / "bin").mkdir(parents=True, exist_ok=True)
        (target / "conf").mkdir(parents=True, exist_ok=True)
        (target / "conf" / "application.properties").write_text(self.properties)
        self.extracted.append(name)
        return target


class FakeLifecycle(NodeLifecycle):
    """NodeLifecycle whose processes are simulated pids; start_node keeps its real logic"""

    def __init__(self, unready_ports=()):
        super().__init__(probe=None, sleep=lambda seconds: None)
        self.unready_ports = set(unready_ports)
        self.next_pid = 1000
        self.running = set()
        self.started_dirs = []
        self.stop_calls = []
        self.killed = []
        self.password_calls = []
        self.dir_pids = {}
        self.running_when_ready_checked = []

    def start(self, node_dir, mode, use_embedded_db=True):
        self.next_pid += 1
        self.running.add(self.next_pid)
        self.started_dirs.append(Path(node_dir))
        return ProcessHandle(pid=self.next_pid)

    def wait_until_ready(self, ports, version, timeout=60):
        self.running_when_ready_checked.append(set(self.running))
        return ports.main not in self.unready_ports

    def is_running(self, handle):
        return handle is not None and not handle.stopped and handle.pid in self.running

    def stop(self, handle, timeout=10):
        if handle is None or handle.stopped:
            return True
        self.stop_calls.append(handle.pid)
        self.running.discard(handle.pid)
        handle.stopped = True
        return True

    def kill(self, handle):
        self.killed.append(handle.pid)
        self.running.discard(handle.pid)
        handle.stopped = True
        return True

    def initialize_admin_password(self, ports, version, password):
        self.password_calls.append((ports.main, version, password))
        return True

    def find_node_process(self, node_dir):
        return self.dir_pids.get(str(Path(node_dir)))


@pytest.fixture(autouse=True)
def test_separator(request):
    print(f"\n{'='*60}")
    print(f"Running: {request.node.name}")
    print(f"{'='*60}")
    yield
    print(f"{'='*60}")
    print(f"Completed: {request.node.name}")
    print(f"{'='*60}\n")


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def package_manager():
    return FakePackageManager()


@pytest.fixture
def lifecycle():
    return FakeLifecycle()
