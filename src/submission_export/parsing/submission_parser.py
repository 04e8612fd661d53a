"""
Submission discovery, parsing, decryption and signature validation.

Submissions live in ``<form dir>/instances/<instance dir>/submission.xml``.
For encrypted forms that file is only a manifest: it names the encrypted
payload and media files, carries the wrapped AES key and the signature.
"""

import hashlib
import hmac
import logging
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from defusedxml import ElementTree as SafeET
from defusedxml.ElementTree import ParseError as SafeParseError
from defusedxml.common import DefusedXmlException

from ..core.date_range import DateRange
from ..core.xml_element import XmlElement, local_name
from ..crypto.cipher_factory import CipherFactory, SubmissionCipher, signature_decrypter
from ..errors import CryptoError, ParsingError, SubmissionError
from ..utils.files import strip_file_extension
from .metadata import SubmissionMetaData, parse_date_time
from .submission import MIN_SUBMISSION_DATE, Submission, ValidationStatus

logger = logging.getLogger(__name__)

SUBMISSION_FILENAME = "submission.xml"

# Called with the failing submission file and a short reason
OnError = Callable[[Path, str], None]


def read_submission_date(path: Union[str, Path]) -> Optional[datetime]:
    """Read the ``submissionDate`` attribute without building the whole tree.

    Returns:
        The date of the first element carrying the attribute, None if absent

    Raises:
        ParsingError: If the file isn't well formed XML
    """
    try:
        for _, element in SafeET.iterparse(str(path), events=("start",)):
            for key, value in element.attrib.items():
                if local_name(key) == "submissionDate":
                    return parse_date_time(value)
    except (SafeParseError, DefusedXmlException, OSError) as e:
        raise ParsingError(f"Can't read submission date from {path}: {e}") from e
    except ValueError as e:
        raise ParsingError(f"Invalid submission date in {path}: {e}") from e
    return None


def list_submission_files(
    form_dir: Union[str, Path],
    date_range: Optional[DateRange] = None,
    last_exported: Optional[datetime] = None,
) -> List[Path]:
    """List the submission files of a form that should be exported.

    Args:
        form_dir: Form directory holding the ``instances`` folder
        date_range: Keep submissions whose date falls inside this range
        last_exported: When set, keep only submissions strictly after this date

    Returns:
        Submission file paths ordered by submission date
    """
    instances_dir = Path(form_dir) / "instances"
    if not instances_dir.is_dir():
        logger.warning(f"No instances directory found in {form_dir}")
        return []

    date_range = date_range or DateRange.empty()
    candidates: List[Tuple[datetime, Path]] = []
    for instance_dir in sorted(p for p in instances_dir.iterdir() if p.is_dir()):
        submission_file = instance_dir / SUBMISSION_FILENAME
        if not submission_file.exists():
            logger.warning(f"Skipping {instance_dir.name}: no {SUBMISSION_FILENAME} found")
            continue
        try:
            submission_date = read_submission_date(submission_file) or MIN_SUBMISSION_DATE
        except ParsingError as e:
            # Keep it: the full parse will report it as a skipped submission
            logger.error(str(e))
            submission_date = MIN_SUBMISSION_DATE
        candidates.append((submission_date, submission_file))

    selected = [
        (submission_date, path)
        for submission_date, path in candidates
        if date_range.contains(submission_date)
        and (last_exported is None or last_exported < submission_date)
    ]
    selected.sort(key=lambda pair: pair[0])
    return [path for _, path in selected]


def parse_submission(
    path: Union[str, Path],
    is_encrypted: bool,
    private_key: Optional[RSAPrivateKey] = None,
    on_error: Optional[OnError] = None,
) -> Optional[Submission]:
    """Parse a submission, decrypting and validating it when the form is encrypted.

    Any problem drops the submission: the reason is logged, reported through
    ``on_error`` and None is returned.

    Args:
        path: Path to the submission.xml file
        is_encrypted: Whether the form's submissions are encrypted
        private_key: Key to decrypt them with
        on_error: Callback receiving the failing file and the reason

    Returns:
        The parsed Submission, or None if it can't be exported
    """
    path = Path(path)
    working_dir = Path(tempfile.mkdtemp(prefix="submission-export-")) if is_encrypted else path.parent
    try:
        root = XmlElement.from_file(path)
        metadata = SubmissionMetaData.from_root(root)

        cipher_factory = None
        if metadata.instance_id and metadata.base64_encrypted_key and private_key is not None:
            cipher_factory = CipherFactory.derive_from(metadata.instance_id, metadata.base64_encrypted_key, private_key)

        signature = None
        if private_key is not None and metadata.encrypted_signature:
            signature = signature_decrypter(private_key)(metadata.encrypted_signature)

        submission = Submission(
            path=path,
            working_dir=working_dir,
            root=root,
            metadata=metadata,
            cipher_factory=cipher_factory,
            signature=signature,
            temporary_working_dir=is_encrypted,
        )
        if not is_encrypted:
            return submission

        decrypted = decrypt(submission)
        status = ValidationStatus.of(is_valid(submission, decrypted))
        if status == ValidationStatus.INVALID:
            logger.warning(f"Submission {metadata.instance_id or path} doesn't match its signature")
        return decrypted.with_validation_status(status)
    except (SubmissionError, CryptoError, OSError) as e:
        if is_encrypted:
            shutil.rmtree(working_dir, ignore_errors=True)
        reason = "parsing error" if isinstance(e, ParsingError) else str(e)
        logger.warning(f"Skipping submission {path}: {e}")
        if on_error is not None:
            on_error(path, reason)
        return None


def decrypt(submission: Submission) -> Submission:
    """Decrypt media files then the payload, in that order, into the working dir.

    Raises:
        SubmissionError: If a media file or the payload is missing
        CryptoError: If a file can't be decrypted
    """
    media_paths = submission.media_paths()
    if len(media_paths) != len(submission.metadata.media_names):
        raise SubmissionError(f"Some media files referenced by {submission.path} are missing")

    for media_path in media_paths:
        decrypt_file(media_path, submission.working_dir, submission.next_cipher())

    encrypted_file = submission.encrypted_file_path()
    if not encrypted_file.exists():
        raise SubmissionError(f"Encrypted file {encrypted_file.name} not found")
    decrypted_file = decrypt_file(encrypted_file, submission.working_dir, submission.next_cipher())
    return submission.with_decrypted(decrypted_file, XmlElement.from_file(decrypted_file))


def decrypt_file(encrypted_file: Path, working_dir: Path, cipher: SubmissionCipher) -> Path:
    """Decrypt "name.ext.enc" into "<working_dir>/name.ext"."""
    return cipher.decrypt_file(encrypted_file, working_dir / strip_file_extension(encrypted_file.name))


def is_valid(original: Submission, decrypted: Submission) -> bool:
    """Compare the MD5 of the rebuilt signature text with the decrypted signature."""
    if original.signature is None:
        return False
    digest = hashlib.md5(decrypted.build_signature(original).encode("utf-8")).digest()
    return hmac.compare_digest(digest, original.signature)
