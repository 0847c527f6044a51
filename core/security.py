"""
Security utilities for file identifiers, download link signing
and admin token checks
"""
import hashlib
import hmac
import secrets

# 16 random bytes -> 32 hex characters
FILE_ID_BYTES = 16


def generate_file_id() -> str:
    """
    Generate a new file identifier.

    Identifiers come from the OS CSPRNG, so uploads landing in the same
    clock tick can never collide.

    Returns:
        Lowercase hex string
    """
    return secrets.token_hex(FILE_ID_BYTES)


def tokens_match(provided: str | None, expected: str | None) -> bool:
    """
    Constant-time comparison of two secrets.

    Args:
        provided: Value supplied by the caller
        expected: Configured value

    Returns:
        False if either side is missing, otherwise whether they are equal
    """
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


class LinkSigner:
    """
    Signs file identifiers with HMAC-SHA256.

    A signature carries no expiry of its own; the file record's
    expires_at is what makes a link stop working.
    """

    def __init__(self, key: str | bytes):
        if not key:
            raise ValueError("Link signing key must not be empty")
        self._key = key.encode("utf-8") if isinstance(key, str) else key

    def sign(self, file_id: str) -> str:
        """
        Compute the signature for a file identifier

        Args:
            file_id: File identifier

        Returns:
            Hex encoded HMAC-SHA256 digest
        """
        return hmac.new(self._key, file_id.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify(self, file_id: str, signature: str | None) -> bool:
        """
        Verify a signature for a file identifier in constant time

        Args:
            file_id: File identifier
            signature: Signature supplied by the caller

        Returns:
            True if the signature matches, False otherwise
        """
        if not signature:
            return False
        expected = self.sign(file_id)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))
