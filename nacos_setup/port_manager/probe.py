"""
Local TCP port probing

PortProbe picks one ProbeStrategy when it is constructed (the first one whose
mechanism is usable on this host) and uses it for every query. Any failure to
probe is reported as "port in use" so a port is never double-bound because a
check could not be made.
"""
import logging
import os
import socket
import sys
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import psutil

from ..interfaces import IPortProbe

logger = logging.getLogger(__name__)

MANAGED_PROCESS_MARKER = "nacos"
TCP_LISTEN_STATE = "0A"
PROC_NET_TCP_FILES = ("/proc/net/tcp", "/proc/net/tcp6")


class ProbeStrategy(ABC):
    """One mechanism for telling whether a port has a listener"""
    name = "base"

    @abstractmethod
    def is_available(self) -> bool:
        """Whether this mechanism can be used on this host"""
        pass

    @abstractmethod
    def is_port_in_use(self, port: int) -> bool:
        pass


class SocketBindStrategy(ProbeStrategy):
    """Try to bind the port on all interfaces; failure means something holds it"""
    name = "socket-bind"

    def is_available(self) -> bool:
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM):
                return True
        except OSError:
            return False

    def is_port_in_use(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            if not sys.platform.startswith('win'):
                # lets TIME_WAIT leftovers count as free; a live listener still blocks bind
                s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                s.bind(('', port))
            except OSError:
                return True
        return False


class PsutilConnectionsStrategy(ProbeStrategy):
    """Look the port up in the system-wide TCP connection table"""
    name = "psutil-connections"

    def is_available(self) -> bool:
        try:
            psutil.net_connections(kind='tcp')
            return True
        except (psutil.AccessDenied, psutil.Error, OSError, NotImplementedError):
            return False

    def is_port_in_use(self, port: int) -> bool:
        for conn in psutil.net_connections(kind='tcp'):
            if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                return True
        return False


class ProcNetTcpStrategy(ProbeStrategy):
    """Parse /proc/net/tcp{,6} for a listening socket on the port (Linux)"""
    name = "proc-net-tcp"

    def __init__(self, files: Iterable[str] = PROC_NET_TCP_FILES):
        self.files = list(files)

    def is_available(self) -> bool:
        return any(os.path.isfile(path) for path in self.files)

    def is_port_in_use(self, port: int) -> bool:
        port_hex = f"{port:04X}"
        for path in self.files:
            if not os.path.isfile(path):
                continue
            with open(path, 'r') as f:
                next(f, None)  # header
                for line in f:
                    fields = line.split()
                    if len(fields) < 4:
                        continue
                    local_port = fields[1].rsplit(':', 1)[-1]
                    if local_port.upper() == port_hex and fields[3].upper() == TCP_LISTEN_STATE:
                        return True
        return False


class ConnectProbeStrategy(ProbeStrategy):
    """Last resort: a successful connect to localhost means someone listens"""
    name = "connect"

    def __init__(self, timeout: float = 0.5):
        self.timeout = timeout

    def is_available(self) -> bool:
        return True

    def is_port_in_use(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.settimeout(self.timeout)
            return s.connect_ex(('127.0.0.1', port)) == 0


class FailClosedStrategy(ProbeStrategy):
    """Used when nothing else works: every port is reported busy"""
    name = "fail-closed"

    def is_available(self) -> bool:
        return True

    def is_port_in_use(self, port: int) -> bool:
        return True


def default_strategies() -> List[ProbeStrategy]:
    return [
        SocketBindStrategy(),
        PsutilConnectionsStrategy(),
        ProcNetTcpStrategy(),
        ConnectProbeStrategy(),
    ]


def select_strategy(strategies: Iterable[ProbeStrategy]) -> ProbeStrategy:
    """First available strategy, or FailClosedStrategy when none is"""
    for strategy in strategies:
        try:
            if strategy.is_available():
                return strategy
        except Exception as e:
            logger.debug(f"Probe strategy {strategy.name} unavailable: {e}")
    logger.warning("No port probing mechanism available; treating all ports as in use")
    return FailClosedStrategy()


class PortProbe(IPortProbe):
    """Answers port and process ownership questions about the local host"""

    def __init__(self, strategies: Optional[Iterable[ProbeStrategy]] = None,
                 marker: str = MANAGED_PROCESS_MARKER):
        self.strategy = select_strategy(default_strategies() if strategies is None else strategies)
        self.marker = marker.lower()
        logger.debug(f"Port probe strategy: {self.strategy.name}")

    def is_port_free(self, port: int) -> bool:
        if port <= 0 or port > 65535:
            return False
        try:
            return not self.strategy.is_port_in_use(port)
        except Exception as e:
            logger.debug(f"Probe {self.strategy.name} failed for port {port}: {e}")
            return False

    def owner_of_port(self, port: int) -> Optional[int]:
        try:
            for conn in psutil.net_connections(kind='tcp'):
                if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port and conn.pid:
                    return conn.pid
            return None
        except (psutil.AccessDenied, OSError):
            pass

        # System-wide table needs privileges on some platforms; walk our own processes instead
        for proc in psutil.process_iter(['pid']):
            try:
                for conn in proc.net_connections(kind='tcp'):
                    if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port == port:
                        return proc.info['pid']
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return None

    def is_managed_process(self, pid: Optional[int]) -> bool:
        if not pid:
            return False
        try:
            cmdline = ' '.join(psutil.Process(pid).cmdline())
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return False
        return self.marker in cmdline.lower()
