"""
Parsed submissions.

A Submission is never modified in place: decrypting it or recording its
validation status produces a copy through ``dataclasses.replace``.
"""

import shutil
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..core.xml_element import XmlElement
from ..crypto.cipher_factory import CipherFactory, SubmissionCipher
from ..errors import SubmissionError
from ..utils.files import crc32_checksum, md5_hash, strip_file_extension
from .metadata import SubmissionMetaData

MIN_SUBMISSION_DATE = datetime(1970, 1, 1, tzinfo=timezone.utc)


class ValidationStatus(str, Enum):
    """Outcome of checking an encrypted submission against its signature."""
    NOT_VALIDATED = "NOT_VALIDATED"
    VALID = "VALID"
    INVALID = "INVALID"

    @classmethod
    def of(cls, valid: bool) -> "ValidationStatus":
        return cls.VALID if valid else cls.INVALID

    def as_csv_value(self) -> str:
        if self == ValidationStatus.VALID:
            return "true"
        if self == ValidationStatus.INVALID:
            return "false"
        return ""


@dataclass(frozen=True)
class Submission:
    """One form response, optionally decrypted."""
    path: Path
    working_dir: Path
    root: XmlElement
    metadata: SubmissionMetaData
    validation_status: ValidationStatus = ValidationStatus.NOT_VALIDATED
    cipher_factory: Optional[CipherFactory] = None
    signature: Optional[bytes] = None
    temporary_working_dir: bool = False

    @property
    def instance_id(self) -> Optional[str]:
        return self.metadata.instance_id

    @property
    def submission_date(self) -> Optional[datetime]:
        return self.metadata.submission_date

    def submission_date_or_min(self) -> datetime:
        return self.metadata.submission_date or MIN_SUBMISSION_DATE

    def get_instance_id(self, required: bool = False) -> str:
        """Instance ID used as row key.

        Args:
            required: Raise instead of falling back to a checksum based key

        Raises:
            SubmissionError: If the ID is required and missing
        """
        if self.metadata.instance_id is not None:
            return self.metadata.instance_id
        if required:
            raise SubmissionError(f"No instance ID found in {self.path}")
        return f"crc32:{crc32_checksum(self.path)}"

    def find_element(self, name: str) -> Optional[XmlElement]:
        return self.root.find_element(name)

    def elements(self, fqn: str) -> List[XmlElement]:
        """All elements of the submission with the given FQN, in document order."""
        return [element for element in self.root.flatten() if element.fqn() == fqn]

    # Encrypted submissions

    def media_paths(self) -> List[Path]:
        """Paths of the referenced media files that exist next to the submission."""
        candidates = (self.path.parent / name for name in self.metadata.media_names)
        return [path for path in candidates if path.exists()]

    def encrypted_file_path(self) -> Path:
        if self.metadata.encrypted_xml_file is None:
            raise SubmissionError(f"Missing encryptedXmlFile element in {self.path}")
        return self.path.parent / self.metadata.encrypted_xml_file

    def next_cipher(self) -> SubmissionCipher:
        if self.cipher_factory is None:
            raise SubmissionError(f"No cipher available to decrypt {self.path}")
        return self.cipher_factory.next()

    def with_decrypted(self, path: Path, root: XmlElement) -> "Submission":
        return replace(self, path=path, root=root)

    def with_validation_status(self, status: ValidationStatus) -> "Submission":
        return replace(self, validation_status=status)

    def build_signature(self, original: "Submission") -> str:
        """Canonical text the form author's signature was computed over.

        ``self`` is the decrypted submission and ``original`` the encrypted
        manifest it came from.
        """
        if self.metadata.base64_encrypted_key is None:
            raise SubmissionError("Missing base64EncryptedKey element in encrypted form")
        parts = [self.metadata.form_id]
        if self.metadata.version is not None:
            parts.append(self.metadata.version)
        parts.append(self.metadata.base64_encrypted_key)
        parts.append(self.metadata.instance_id or f"crc32:{crc32_checksum(original.path)}")
        for media_name in self.metadata.media_names:
            decrypted = self.working_dir / strip_file_extension(media_name)
            parts.append(f"{decrypted.name}::{md5_hash(decrypted)}")
        parts.append(f"{original.path.name}::{md5_hash(self.path)}")
        return "\n".join(parts) + "\n"

    def cleanup(self) -> None:
        """Remove the temporary working directory holding decrypted files."""
        if self.temporary_working_dir:
            shutil.rmtree(self.working_dir, ignore_errors=True)
