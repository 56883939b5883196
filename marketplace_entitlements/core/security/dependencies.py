from marketplace_entitlements.core.config import settings
from marketplace_entitlements.core.errors import ConfigurationError
from marketplace_entitlements.core.security.crypto import SecurityCipher


def get_security_cipher() -> SecurityCipher:
    key = (settings.master_encryption_key or "").strip()
    if not key or key == "replace_with_fernet_key":
        raise ConfigurationError("MASTER_ENCRYPTION_KEY is not configured with a valid Fernet key")
    return SecurityCipher(key)
