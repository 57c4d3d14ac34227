"""
Base interfaces for the pluggable collaborators
"""
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional


class IPackageManager(ABC):
    """Interface for obtaining and unpacking the server package"""

    @abstractmethod
    def fetch(self, version: str) -> Path:
        """Return a verified local archive for the given server version"""
        pass

    @abstractmethod
    def extract_to(self, archive: Path, parent_dir: Path, name: str) -> Path:
        """Unpack archive into parent_dir/name and return that directory"""
        pass


class IPortProbe(ABC):
    """Interface for querying local TCP port usage"""

    @abstractmethod
    def is_port_free(self, port: int) -> bool:
        """True iff nothing is listening on port"""
        pass

    @abstractmethod
    def owner_of_port(self, port: int) -> Optional[int]:
        """PID of the process listening on port, if it can be determined"""
        pass

    @abstractmethod
    def is_managed_process(self, pid: int) -> bool:
        """True iff pid is an instance of the managed server"""
        pass
