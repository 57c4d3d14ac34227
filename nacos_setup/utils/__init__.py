"""
Collaborators used by the orchestrator: package cache, Java discovery,
property files, credentials, polling and local address detection
"""
from .polling import poll_until
from .properties import set_config_property, read_property, read_properties, remove_properties
from .credentials import generate_password, generate_secret_key, generate_shared_secrets
from .versioning import MINIMUM_NACOS_VERSION, version_ge, is_supported_version

__all__ = [
    'poll_until',
    'set_config_property',
    'read_property',
    'read_properties',
    'remove_properties',
    'generate_password',
    'generate_secret_key',
    'generate_shared_secrets',
    'MINIMUM_NACOS_VERSION',
    'version_ge',
    'is_supported_version',
]
