"""
Metadata pulled from a submission's root element.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

from ..core.xml_element import XmlElement
from ..errors import ParsingError

logger = logging.getLogger(__name__)


def regularize_date_time(value: str) -> str:
    """Normalize the offset of an ISO 8601 date time so it can be parsed.

    "2018-04-26T08:58:20.525Z" -> "2018-04-26T08:58:20.525+00:00"
    "2018-05-13T17:32:57+00"   -> "2018-05-13T17:32:57+00:00"
    """
    if value.endswith("Z"):
        return value[:-1] + "+00:00"
    return value if len(value) - value.rfind(":") == 3 else value + ":00"


def parse_date_time(value: str) -> datetime:
    """Parse an ISO 8601 date time. Values without offset are taken as UTC.

    Raises:
        ValueError: If the value isn't a valid date time
    """
    parsed = datetime.fromisoformat(regularize_date_time(value.strip()))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _first_present(*values: Optional[str]) -> Optional[str]:
    return next((value for value in values if value), None)


@dataclass(frozen=True)
class SubmissionMetaData:
    """Immutable facts about a submission, read once from its root element."""
    form_id: str
    instance_id: Optional[str] = None
    version: Optional[str] = None
    submission_date: Optional[datetime] = None
    encrypted_xml_file: Optional[str] = None
    base64_encrypted_key: Optional[str] = None
    encrypted_signature: Optional[str] = None
    media_names: Tuple[str, ...] = ()

    @classmethod
    def from_root(cls, root: XmlElement) -> "SubmissionMetaData":
        """Extract metadata from a submission (or encrypted manifest) root element.

        Raises:
            ParsingError: If no form ID can be found
        """
        # ElementTree turns a default "xmlns" declaration into the tag's namespace
        form_id = _first_present(root.attribute("id"), root.attribute("xmlns"), root.namespace())
        if form_id is None:
            raise ParsingError("Unable to extract form id")

        instance_id_element = root.find_element("instanceID")
        instance_id = _first_present(
            instance_id_element.maybe_value() if instance_id_element is not None else None,
            root.attribute("instanceID"),
        )

        return cls(
            form_id=form_id,
            instance_id=instance_id,
            version=root.attribute("version"),
            submission_date=_submission_date(root),
            encrypted_xml_file=_element_value(root, "encryptedXmlFile"),
            base64_encrypted_key=_element_value(root, "base64EncryptedKey"),
            encrypted_signature=_element_value(root, "base64EncryptedElementSignature"),
            media_names=_media_names(root),
        )


def _element_value(root: XmlElement, name: str) -> Optional[str]:
    element = root.find_element(name)
    return element.maybe_value() if element is not None else None


def _submission_date(root: XmlElement) -> Optional[datetime]:
    raw = root.attribute("submissionDate")
    if raw is None:
        return None
    try:
        return parse_date_time(raw)
    except ValueError:
        logger.warning(f"Ignoring unparseable submission date '{raw}'")
        return None


def _media_names(root: XmlElement) -> Tuple[str, ...]:
    """Names listed by every ``<media><file>`` pair under the root, in document order."""
    files = (file for media in root.find_elements("media") for file in media.find_elements("file"))
    return tuple(name for name in (file.maybe_value() for file in files) if name is not None)
