"""
Per-submission symmetric cipher issuance for encrypted forms.

Encrypted submissions carry an AES key wrapped with the form's RSA public
key. The initialization vector of every encrypted file is derived from the
instance ID and that key, then perturbed one byte at a time for each file
in a fixed order: every media file in listing order, then the submission
payload.
"""

import base64
import binascii
import hashlib
from pathlib import Path
from typing import Callable, Union

from cryptography.hazmat.decrepit.ciphers.modes import CFB
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import padding as sympad
from cryptography.hazmat.primitives.asymmetric import padding as asympad
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from ..errors import CryptoError

IV_BYTE_LENGTH = 16
AES_KEY_LENGTHS = (16, 24, 32)

RSA_OAEP_PADDING = asympad.OAEP(
    mgf=asympad.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


def rsa_decrypt(private_key: RSAPrivateKey, payload: bytes) -> bytes:
    """Decrypt an RSA-OAEP(SHA-256) payload.

    Raises:
        CryptoError: If the key doesn't match or the payload is malformed
    """
    try:
        return private_key.decrypt(payload, RSA_OAEP_PADDING)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"RSA decryption failed: {e}") from e


def signature_decrypter(private_key: RSAPrivateKey) -> Callable[[str], bytes]:
    """Build a function that recovers the signature digest of a submission.

    Args:
        private_key: RSA private key matching the form's public key

    Returns:
        Callable taking the base64 encrypted signature and returning its bytes
    """
    def decrypt(base64_signature: str) -> bytes:
        try:
            payload = base64.b64decode(base64_signature, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError(f"Signature is not valid base64: {e}") from e
        return rsa_decrypt(private_key, payload)

    return decrypt


class SubmissionCipher:
    """AES/CFB decryptor for one encrypted file, with PKCS#7 unpadding."""

    def __init__(self, key: bytes, iv: bytes):
        self.key = key
        self.iv = iv

    def decrypt(self, data: bytes) -> bytes:
        try:
            decryptor = Cipher(algorithms.AES(self.key), CFB(self.iv)).decryptor()
        except ValueError as e:
            raise CryptoError(f"Can't build cipher: {e}") from e
        padded = decryptor.update(data) + decryptor.finalize()
        unpadder = sympad.PKCS7(algorithms.AES.block_size).unpadder()
        try:
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise CryptoError(f"Bad padding after decryption: {e}") from e

    def decrypt_file(self, source: Union[str, Path], target: Union[str, Path]) -> Path:
        """Decrypt source into target and return the target path."""
        target = Path(target)
        target.write_bytes(self.decrypt(Path(source).read_bytes()))
        return target


class CipherFactory:
    """Stateful source of ciphers for a single encrypted submission.

    Not thread safe. Each submission owns one factory and the ciphers must
    be requested in media-then-payload order, otherwise decryption yields
    garbage (usually surfacing as a padding error).
    """

    def __init__(self, symmetric_key: bytes, iv_seed: bytes):
        """Initialize factory.

        Args:
            symmetric_key: Unwrapped AES key
            iv_seed: 16 byte seed the per-file IVs are derived from
        """
        if len(iv_seed) != IV_BYTE_LENGTH:
            raise CryptoError(f"IV seed must be {IV_BYTE_LENGTH} bytes long, got {len(iv_seed)}")
        self.symmetric_key = symmetric_key
        self._iv_seed = bytearray(iv_seed)
        self._counter = 0

    @classmethod
    def derive_from(
        cls,
        instance_id: str,
        base64_wrapped_key: str,
        private_key: RSAPrivateKey,
    ) -> "CipherFactory":
        """Unwrap the submission's AES key and derive its IV seed.

        Args:
            instance_id: Instance ID of the submission
            base64_wrapped_key: RSA-OAEP wrapped AES key, base64 encoded
            private_key: Form's RSA private key

        Returns:
            A fresh CipherFactory

        Raises:
            CryptoError: If the key can't be unwrapped or isn't a valid AES key
        """
        try:
            wrapped = base64.b64decode(base64_wrapped_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise CryptoError(f"Wrapped key is not valid base64: {e}") from e
        symmetric_key = rsa_decrypt(private_key, wrapped)
        if len(symmetric_key) not in AES_KEY_LENGTHS:
            raise CryptoError(f"Unwrapped key has an invalid AES key length: {len(symmetric_key)} bytes")
        return cls(symmetric_key, derive_iv_seed(instance_id, symmetric_key))

    @property
    def counter(self) -> int:
        return self._counter

    def next(self) -> SubmissionCipher:
        """Perturb the IV seed and return the cipher for the next file."""
        position = self._counter % IV_BYTE_LENGTH
        self._iv_seed[position] = (self._iv_seed[position] + 1) % 256
        self._counter += 1
        return SubmissionCipher(self.symmetric_key, bytes(self._iv_seed))


def derive_iv_seed(instance_id: str, symmetric_key: bytes) -> bytes:
    """MD5(instance_id + key), stretched or truncated to the IV length."""
    digest = hashlib.md5(instance_id.encode("utf-8") + symmetric_key).digest()
    repeats = IV_BYTE_LENGTH // len(digest) + 1
    return (digest * repeats)[:IV_BYTE_LENGTH]
