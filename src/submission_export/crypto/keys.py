"""
Private key loading for encrypted form exports.
"""

import logging
from pathlib import Path
from typing import Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)


def load_private_key(pem_path: Union[str, Path]) -> RSAPrivateKey:
    """Load an unencrypted RSA private key from a PEM file.

    Both PKCS#1 ("BEGIN RSA PRIVATE KEY") and PKCS#8 ("BEGIN PRIVATE KEY")
    encodings are accepted.

    Args:
        pem_path: Path to the PEM file

    Returns:
        The RSA private key

    Raises:
        ConfigurationError: If the file is missing or doesn't hold an RSA key
    """
    pem_path = Path(pem_path)
    if not pem_path.exists():
        raise ConfigurationError(f"PEM file not found: {pem_path}")

    try:
        key = serialization.load_pem_private_key(pem_path.read_bytes(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise ConfigurationError(f"Can't read private key from {pem_path}: {e}") from e

    if not isinstance(key, RSAPrivateKey):
        raise ConfigurationError(f"{pem_path} doesn't contain an RSA private key")

    logger.info(f"Loaded {key.key_size}-bit RSA private key from {pem_path}")
    return key
