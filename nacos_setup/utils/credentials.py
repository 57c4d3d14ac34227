"""
Credential generation for cluster and standalone security settings
"""
import base64
import secrets
import string
import time

from ..models import SharedSecrets

PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_secret_key() -> str:
    """Base64 encoded 32 random bytes, suitable as a JWT signing key"""
    return base64.b64encode(secrets.token_bytes(32)).decode('ascii')


def generate_password(length: int = 12) -> str:
    return ''.join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def generate_shared_secrets(identity_prefix: str = "nacos_cluster") -> SharedSecrets:
    return SharedSecrets(
        token_secret=generate_secret_key(),
        identity_key=f"{identity_prefix}_{int(time.time())}",
        identity_value=generate_secret_key()[:16],
        admin_password=generate_password(),
    )
