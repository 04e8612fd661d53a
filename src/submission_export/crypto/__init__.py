"""
Cryptography helpers for encrypted form submissions.
"""

from .cipher_factory import CipherFactory, SubmissionCipher, signature_decrypter
from .keys import load_private_key

__all__ = [
    'CipherFactory',
    'SubmissionCipher',
    'signature_decrypter',
    'load_private_key',
]
