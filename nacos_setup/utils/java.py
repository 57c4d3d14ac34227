"""
Java runtime discovery and version checks
"""
import logging
import os
import re
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..errors import JavaRuntimeError
from ..models import major_version

logger = logging.getLogger(__name__)

MIN_JAVA_VERSION = 8

MODULE_ACCESS_OPTIONS = [
    "--add-opens", "java.base/java.io=ALL-UNNAMED",
    "--add-opens", "java.base/java.lang=ALL-UNNAMED",
    "--add-opens", "java.base/java.util=ALL-UNNAMED",
    "--add-opens", "java.base/java.util.concurrent=ALL-UNNAMED",
    "--add-opens", "java.base/sun.net.util=ALL-UNNAMED",
]

_VERSION_PATTERN = re.compile(r'version "(\d+)(?:\.(\d+))?')


@dataclass
class JavaRuntime:
    path: str
    version: int

    @property
    def home(self) -> str:
        """JAVA_HOME for this executable (<home>/bin/java)"""
        return str(Path(self.path).resolve().parent.parent)


def required_java_version(nacos_version: str) -> int:
    """Nacos 3.x needs Java 17, older releases run on Java 8"""
    return 17 if major_version(nacos_version) >= 3 else MIN_JAVA_VERSION


def parse_java_version(output: str) -> int:
    """Major Java version from `java -version` output; "1.8.0_x" maps to 8, 0 if unknown"""
    match = _VERSION_PATTERN.search(output)
    if not match:
        return 0
    major = int(match.group(1))
    if major == 1 and match.group(2):
        return int(match.group(2))
    return major


def get_java_version(java_cmd: str) -> int:
    try:
        result = subprocess.run([java_cmd, '-version'], capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Could not run {java_cmd} -version: {e}")
        return 0
    return parse_java_version(result.stderr or result.stdout)


def java_search_paths() -> List[Path]:
    home = Path.home()
    if sys.platform == 'darwin':
        paths = ["/Library/Java/JavaVirtualMachines", "/System/Library/Frameworks/JavaVM.framework"]
    elif sys.platform.startswith('win'):
        paths = ["C:/Program Files/Java", "C:/Program Files/OpenJDK"]
    else:
        paths = ["/usr/lib/jvm", "/usr/java", "/opt/java", "/opt/jdk"]
    candidates = [Path(p) for p in paths]
    candidates.append(home / ".sdkman" / "candidates" / "java")
    candidates.append(home / ".jenv" / "versions")
    return candidates


def _find_java_executables() -> List[str]:
    executable = 'java.exe' if sys.platform.startswith('win') else 'java'
    found = []
    for base in java_search_paths():
        if not base.is_dir():
            continue
        for candidate in base.rglob(executable):
            text = candidate.as_posix()
            if '/jre/bin/' in text:
                continue
            if (text.endswith(f'bin/{executable}') or text.endswith(f'Commands/{executable}')) and os.access(candidate, os.X_OK):
                found.append(str(candidate))
    return found


def search_java_installation(min_version: int) -> Optional[JavaRuntime]:
    """Highest-versioned Java under the well-known install directories meeting min_version"""
    suitable = []
    for java in _find_java_executables():
        version = get_java_version(java)
        if version >= min_version:
            suitable.append(JavaRuntime(path=java, version=version))

    if not suitable:
        return None
    best = max(suitable, key=lambda runtime: runtime.version)
    if len(suitable) > 1:
        logger.info(f"Found {len(suitable)} suitable Java installations, selecting Java {best.version}")
    return best


def find_java_runtime(min_version: int) -> JavaRuntime:
    """
    Locate a Java runtime of at least min_version.

    JAVA_HOME is preferred, then `java` on PATH, then the well-known JVM directories.
    If only an older (>= 8) runtime exists it is returned with a warning, since the
    server may still start; no runtime at all raises JavaRuntimeError.
    """
    candidates = []
    java_home = os.environ.get('JAVA_HOME')
    if java_home:
        candidates.append(('JAVA_HOME', str(Path(java_home) / 'bin' / 'java')))
    path_java = shutil.which('java')
    if path_java:
        candidates.append(('PATH', path_java))

    for source, java in candidates:
        if not os.access(java, os.X_OK):
            continue
        version = get_java_version(java)
        if version >= min_version:
            logger.info(f"Found Java from {source}: {java} (version: {version})")
            return JavaRuntime(path=java, version=version)
        logger.warning(f"Java {version} from {source} is below required version {min_version}")

    runtime = search_java_installation(min_version)
    if runtime:
        logger.info(f"Found suitable Java: {runtime.path} (version: {runtime.version})")
        return runtime

    runtime = search_java_installation(MIN_JAVA_VERSION)
    if runtime:
        logger.warning(f"Found Java {runtime.version}, but Java {min_version}+ is required; the server may fail to start")
        return runtime

    raise JavaRuntimeError(
        f"Java not found. Please install Java {min_version} or later",
        hint=f"e.g. 'sudo apt-get install openjdk-{max(min_version, 17)}-jdk' or 'brew install openjdk@{max(min_version, 17)}'",
    )


def runtime_options(runtime: Optional[JavaRuntime]) -> str:
    """JAVA_OPT flags the server needs on JDK 9+"""
    if runtime is None or runtime.version < 9:
        return ""
    return ' '.join(MODULE_ACCESS_OPTIONS)
