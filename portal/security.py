from cryptography.hazmat.primitives import hashes


class CredentialConfigError(RuntimeError):
    pass


def validate_credential_configuration(salt: str | None) -> None:
    if not salt:
        raise CredentialConfigError("CREDENTIAL_SALT must be a non-empty string.")


def _sha256_hex(data: bytes) -> str:
    hasher = hashes.Hash(hashes.SHA256())
    hasher.update(data)
    return hasher.finalize().hex()


def digest(secret: str, salt: str) -> str:
    # One fixed application salt, single round. Not suitable for real credentials.
    return _sha256_hex((secret + salt).encode("utf-8"))


def verify(secret: str, stored_digest: str | None, salt: str) -> bool:
    if not stored_digest:
        return False
    return digest(secret, salt) == stored_digest


def visitor_hash(user_agent: str, epoch_millis: int) -> str:
    return _sha256_hex(f"{user_agent}{epoch_millis}".encode("utf-8"))[:16]
