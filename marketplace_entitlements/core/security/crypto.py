from __future__ import annotations

import json

from cryptography.fernet import Fernet, InvalidToken


class EncryptionError(ValueError):
    pass


class SecurityCipher:
    def __init__(self, fernet_key: str) -> None:
        self._fernet = Fernet(fernet_key.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return token.decode("utf-8")

    def decrypt(self, ciphertext: str, ttl_seconds: int | None = None) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"), ttl=ttl_seconds)
        except InvalidToken as exc:
            raise EncryptionError("Unable to decrypt value") from exc
        return plaintext.decode("utf-8")

    def seal(self, payload: dict[str, object]) -> str:
        return self.encrypt(json.dumps(payload, separators=(",", ":")))

    def unseal(self, ciphertext: str, ttl_seconds: int | None = None) -> dict[str, object]:
        try:
            return json.loads(self.decrypt(ciphertext, ttl_seconds=ttl_seconds))
        except json.JSONDecodeError as exc:
            raise EncryptionError("Decrypted value is not a JSON object") from exc
