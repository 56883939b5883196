from marketplace_entitlements.core.security.crypto import EncryptionError, SecurityCipher
from marketplace_entitlements.core.security.dependencies import get_security_cipher

__all__ = ["EncryptionError", "SecurityCipher", "get_security_cipher"]
