"""
application.properties edits for a single node: ports, security and datasource
"""
import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ..errors import ProvisioningError
from ..models import PortSet, SharedSecrets, major_version
from ..utils.properties import (
    backup_config_file,
    read_properties,
    read_property,
    remove_properties,
    set_config_property,
    write_properties,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

GLOBAL_DATASOURCE_CONFIG = os.path.join(os.path.expanduser("~"), "ai-infra", "nacos", "default.properties")

MAIN_PORT_KEY = "nacos.server.main.port"
CONSOLE_PORT_KEY = "nacos.console.port"
LEGACY_PORT_KEY = "server.port"

_DATASOURCE_MARKER = re.compile(r'^(spring\.(datasource|sql\.init)\.platform|db\.num)')
_STALE_DATASOURCE_KEYS = ("spring.datasource.platform", "db.num", "db.url", "db.user", "db.password")


def _require(config_file: PathLike) -> Path:
    path = Path(config_file)
    if not path.is_file():
        raise ProvisioningError(f"Config file not found: {path}")
    return path


def update_port_config(config_file: PathLike, ports: PortSet, version: str) -> None:
    path = _require(config_file)
    backup_config_file(path)
    if major_version(version) >= 3:
        set_config_property(path, MAIN_PORT_KEY, ports.main)
        set_config_property(path, CONSOLE_PORT_KEY, ports.console)
    else:
        set_config_property(path, LEGACY_PORT_KEY, ports.main)


def apply_security_config(config_file: PathLike, secrets: SharedSecrets) -> None:
    path = _require(config_file)
    set_config_property(path, "nacos.core.auth.enabled", "true")
    set_config_property(path, "nacos.core.auth.plugin.nacos.token.secret.key", secrets.token_secret)
    set_config_property(path, "nacos.core.auth.server.identity.key", secrets.identity_key)
    set_config_property(path, "nacos.core.auth.server.identity.value", secrets.identity_value)


def has_datasource_config(path: PathLike) -> bool:
    """True if the file defines an external database (platform or db.num)"""
    path = Path(path)
    if not path.is_file() or path.stat().st_size == 0:
        return False
    return any(_DATASOURCE_MARKER.match(key) for key in read_properties(path))


def load_datasource_config(explicit_file: Optional[PathLike] = None,
                           global_file: PathLike = GLOBAL_DATASOURCE_CONFIG) -> Optional[Path]:
    """External datasource file to use, or None for the embedded database"""
    for candidate in (explicit_file, global_file):
        if candidate and has_datasource_config(candidate):
            return Path(candidate)
    if explicit_file:
        logger.warning(f"Datasource file {explicit_file} has no database settings, using embedded storage")
    return None


def apply_datasource_config(config_file: PathLike, datasource_file: PathLike) -> None:
    path = _require(config_file)
    for key, value in read_properties(datasource_file).items():
        set_config_property(path, key, value)


def configure_embedded_storage(config_file: PathLike) -> None:
    """Cluster nodes on the embedded database must name derby explicitly and drop external db keys"""
    path = _require(config_file)
    set_config_property(path, "spring.sql.init.platform", "derby")
    remove_properties(path, _STALE_DATASOURCE_KEYS)


def read_main_port(config_file: PathLike, version: str) -> Optional[int]:
    """Node's main port from its config, or None when the key is absent"""
    key = MAIN_PORT_KEY if major_version(version) >= 3 else LEGACY_PORT_KEY
    value = read_property(config_file, key)
    if value is None and key == MAIN_PORT_KEY:
        value = read_property(config_file, LEGACY_PORT_KEY)
    if value and value.isdigit():
        return int(value)
    return None


def read_console_port(config_file: PathLike) -> Optional[int]:
    value = read_property(config_file, CONSOLE_PORT_KEY)
    if value and value.isdigit():
        return int(value)
    return None


def read_port_set(config_file: PathLike, version: str) -> Optional[PortSet]:
    main = read_main_port(config_file, version)
    if main is None:
        return None
    console = read_console_port(config_file) if major_version(version) >= 3 else None
    return PortSet(main, console)


DATASOURCE_PLATFORMS = {'mysql': 3306, 'postgresql': 5432}

_MYSQL_URL_OPTIONS = ("characterEncoding=utf8&connectTimeout=1000&socketTimeout=3000"
                      "&autoReconnect=true&useSSL=false&allowPublicKeyRetrieval=true")

_POOL_SETTINGS = {
    "db.pool.config.connectionTimeout": "30000",
    "db.pool.config.validationTimeout": "10000",
    "db.pool.config.maximumPoolSize": "20",
    "db.pool.config.minimumIdle": "2",
}


def datasource_url(platform: str, host: str, port: int, database: str) -> str:
    if platform == 'mysql':
        return f"jdbc:mysql://{host}:{port}/{database}?{_MYSQL_URL_OPTIONS}"
    if platform == 'postgresql':
        return f"jdbc:postgresql://{host}:{port}/{database}?currentSchema=public"
    raise ProvisioningError(f"Unsupported datasource platform: {platform}",
                            hint=f"Choose one of: {', '.join(DATASOURCE_PLATFORMS)}")


def write_datasource_config(platform: str, user: str, password: str, host: str = "localhost",
                            port: Optional[int] = None, database: str = "nacos",
                            path: PathLike = GLOBAL_DATASOURCE_CONFIG, overwrite: bool = False) -> Path:
    """
    Write the external database settings that new nodes pick up.

    An existing non-empty file is only replaced with overwrite=True.
    """
    path = Path(path)
    if not user or not password:
        raise ProvisioningError("Database user and password are required")
    url = datasource_url(platform, host, port or DATASOURCE_PLATFORMS.get(platform), database)
    if path.is_file() and path.stat().st_size > 0 and not overwrite:
        raise ProvisioningError(f"Datasource config already exists: {path}", hint="Use --force to overwrite")

    properties = {
        "spring.sql.init.platform": platform,
        "db.num": "1",
        "db.url.0": url,
        "db.user.0": user,
        "db.password.0": password,
    }
    properties.update(_POOL_SETTINGS)
    header = f"Nacos External Datasource Configuration\nAuto-generated on {datetime.now():%Y-%m-%d %H:%M:%S}"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        write_properties(path, properties, header=header)
    except OSError as e:
        raise ProvisioningError(f"Failed to write datasource config {path}: {e}")
    logger.info(f"Datasource configuration saved to: {path}")
    return path
