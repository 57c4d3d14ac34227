"""
Flat key=value property file helpers (application.properties, share.properties)
"""
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _split_property(line: str):
    stripped = line.strip()
    if not stripped or stripped.startswith('#') or '=' not in stripped:
        return None, None
    key, value = stripped.split('=', 1)
    return key.strip(), value.strip()


def read_properties(path: PathLike) -> Dict[str, str]:
    """Parse active (uncommented) key=value lines; later keys win"""
    properties = {}
    with open(path, 'r') as f:
        for line in f:
            key, value = _split_property(line)
            if key:
                properties[key] = value
    return properties


def read_property(path: PathLike, key: str) -> Optional[str]:
    path = Path(path)
    if not path.is_file():
        return None
    return read_properties(path).get(key)


def set_config_property(path: PathLike, key: str, value) -> None:
    """
    Idempotently set key=value in a property file.

    An existing active line is replaced in place, a commented-out `#key=` line is
    uncommented and set, otherwise the property is appended.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Config file does not exist: {path}")

    text = path.read_text()
    lines = text.splitlines()
    new_line = f"{key}={value}"

    for prefix in (f"{key}=", f"#{key}="):
        for i, line in enumerate(lines):
            if line.startswith(prefix):
                lines[i] = new_line
                path.write_text('\n'.join(lines) + '\n')
                return

    if text and not text.endswith('\n'):
        text += '\n'
    path.write_text(text + new_line + '\n')


def remove_properties(path: PathLike, prefixes: Iterable[str]) -> int:
    """Drop every active line whose key starts with one of the prefixes; returns how many"""
    path = Path(path)
    prefixes = tuple(prefixes)
    kept = []
    removed = 0
    for line in path.read_text().splitlines():
        key, _ = _split_property(line)
        if key and key.startswith(prefixes):
            removed += 1
            continue
        kept.append(line)
    path.write_text('\n'.join(kept) + ('\n' if kept else ''))
    return removed


def write_properties(path: PathLike, properties: Dict[str, str], header: Optional[str] = None) -> None:
    lines = []
    if header:
        lines.extend(f"# {line}" for line in header.splitlines())
        lines.append('')
    lines.extend(f"{key}={value}" for key, value in properties.items())
    Path(path).write_text('\n'.join(lines) + '\n')


def backup_config_file(path: PathLike) -> Optional[Path]:
    """Copy path to path.backup.<timestamp>; None when there is nothing to back up"""
    path = Path(path)
    if not path.is_file():
        return None
    backup = path.with_name(f"{path.name}.backup.{datetime.now().strftime('%Y%m%d_%H%M%S')}")
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        logger.warning(f"Failed to create backup of {path}: {e}")
        return None
    logger.debug(f"Config backed up to: {backup}")
    return backup
