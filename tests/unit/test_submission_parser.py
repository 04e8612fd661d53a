"""
Unit tests for submission discovery, parsing and decryption.
"""

import base64
import hashlib
import re
from datetime import date, datetime, timezone

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from submission_export.core import DateRange
from submission_export.core.xml_element import XmlElement
from submission_export.crypto.cipher_factory import RSA_OAEP_PADDING
from submission_export.parsing import (
    Submission,
    SubmissionMetaData,
    ValidationStatus,
    list_submission_files,
    parse_submission,
    read_submission_date,
)
from submission_export.parsing.metadata import parse_date_time, regularize_date_time
from submission_export.utils.files import crc32_checksum

ENCRYPTED_PAYLOAD = (
    '<data id="secret"><answer>42</answer><photo>photo.jpg</photo>'
    "<meta><instanceID>uuid:enc-1</instanceID></meta></data>"
)


class ErrorRecorder:
    """Collects on_error callbacks."""

    def __init__(self):
        self.calls = []

    def __call__(self, path, reason):
        self.calls.append((path, reason))


class TestDates:
    """Test submission date handling."""

    @pytest.mark.parametrize("raw,expected", [
        ("2018-04-26T08:58:20.525Z", "2018-04-26T08:58:20.525+00:00"),
        ("2018-05-13T17:32:57+00", "2018-05-13T17:32:57+00:00"),
        ("2018-05-13T17:32:57+02:00", "2018-05-13T17:32:57+02:00"),
    ])
    def test_regularize(self, raw, expected):
        assert regularize_date_time(raw) == expected

    def test_parse_date_time(self):
        assert parse_date_time("2018-05-13T17:32:57+02") == datetime(2018, 5, 13, 15, 32, 57, tzinfo=timezone.utc)

    def test_read_submission_date(self, tmp_path, submission_writer, household_xml):
        path = submission_writer(tmp_path, "one", household_xml("uuid:1", "2024-03-01T10:00:00.000Z"))
        assert read_submission_date(path) == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)

    def test_missing_submission_date(self, tmp_path, submission_writer):
        path = submission_writer(tmp_path, "one", '<data id="household"><name>x</name></data>')
        assert read_submission_date(path) is None


class TestListSubmissionFiles:
    """Test candidate selection."""

    @pytest.fixture
    def form_dir(self, tmp_path, submission_writer, household_xml):
        submission_writer(tmp_path, "c", household_xml("uuid:3", "2024-03-03T10:00:00Z"))
        submission_writer(tmp_path, "a", household_xml("uuid:1", "2024-03-01T10:00:00Z"))
        submission_writer(tmp_path, "b", household_xml("uuid:2", "2024-03-02T10:00:00Z"))
        return tmp_path

    def test_sorted_by_date(self, form_dir):
        paths = list_submission_files(form_dir)
        assert [p.parent.name for p in paths] == ["a", "b", "c"]

    def test_date_range_is_inclusive(self, form_dir):
        paths = list_submission_files(form_dir, DateRange(date(2024, 3, 2), date(2024, 3, 3)))
        assert [p.parent.name for p in paths] == ["b", "c"]

    def test_last_exported_is_exclusive(self, form_dir):
        last_exported = datetime(2024, 3, 2, 10, tzinfo=timezone.utc)
        paths = list_submission_files(form_dir, last_exported=last_exported)
        assert [p.parent.name for p in paths] == ["c"]

    def test_missing_instances_dir(self, tmp_path):
        assert list_submission_files(tmp_path / "nothing") == []

    def test_broken_file_is_kept_for_the_parser(self, form_dir, submission_writer):
        """Test an unreadable file is still listed so the parse reports it."""
        submission_writer(form_dir, "broken", "<data><unclosed></data>")
        paths = list_submission_files(form_dir)
        assert paths[0].parent.name == "broken"
        assert len(paths) == 4


class TestParsePlainSubmission:
    """Test parsing unencrypted submissions."""

    def test_metadata(self, tmp_path, submission_writer, household_xml):
        path = submission_writer(tmp_path, "one", household_xml("uuid:1"))

        submission = parse_submission(path, False)

        assert submission.metadata.form_id == "household"
        assert submission.metadata.version == "2024010101"
        assert submission.instance_id == "uuid:1"
        assert submission.submission_date == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
        assert submission.validation_status == ValidationStatus.NOT_VALIDATED
        assert submission.working_dir == path.parent

    def test_instance_id_attribute_fallback(self, tmp_path, submission_writer):
        path = submission_writer(tmp_path, "one", '<data id="f" instanceID="uuid:attr"><x>1</x></data>')
        assert parse_submission(path, False).instance_id == "uuid:attr"

    def test_missing_instance_id_uses_checksum(self, tmp_path, submission_writer):
        path = submission_writer(tmp_path, "one", '<data id="f"><x>1</x></data>')
        submission = parse_submission(path, False)

        assert submission.instance_id is None
        assert submission.get_instance_id() == f"crc32:{crc32_checksum(path)}"

    def test_namespace_form_id_fallback(self, tmp_path, submission_writer):
        """Test the default namespace stands in for a missing id attribute."""
        path = submission_writer(tmp_path, "one", '<data xmlns="http://example.org/form"><x>1</x></data>')
        assert parse_submission(path, False).metadata.form_id == "http://example.org/form"

    def test_missing_form_id_reports_error(self, tmp_path, submission_writer):
        path = submission_writer(tmp_path, "one", "<data><x>1</x></data>")
        recorder = ErrorRecorder()

        assert parse_submission(path, False, on_error=recorder) is None
        assert recorder.calls == [(path, "parsing error")]

    def test_invalid_xml_reports_error(self, tmp_path, submission_writer):
        path = submission_writer(tmp_path, "one", "<data><unclosed></data>")
        recorder = ErrorRecorder()

        assert parse_submission(path, False, on_error=recorder) is None
        assert recorder.calls == [(path, "parsing error")]


class TestParseEncryptedSubmission:
    """Test decryption and signature validation."""

    def test_decrypts_media_and_payload(self, tmp_path, private_key, public_key, encrypted_submission_writer):
        path = encrypted_submission_writer(
            tmp_path, "one", public_key, "uuid:enc-1", ENCRYPTED_PAYLOAD, media={"photo.jpg": b"jpeg bytes"},
        )

        submission = parse_submission(path, True, private_key)

        try:
            assert submission.validation_status == ValidationStatus.VALID
            assert submission.find_element("answer").value() == "42"
            assert (submission.working_dir / "photo.jpg").read_bytes() == b"jpeg bytes"
            assert submission.working_dir != path.parent
        finally:
            submission.cleanup()
        assert not submission.working_dir.exists()

    def test_signature_mismatch_keeps_submission(self, tmp_path, private_key, public_key, encrypted_submission_writer):
        path = encrypted_submission_writer(
            tmp_path, "one", public_key, "uuid:enc-1", ENCRYPTED_PAYLOAD, tamper_signature=True,
        )

        submission = parse_submission(path, True, private_key)

        assert submission is not None
        assert submission.validation_status == ValidationStatus.INVALID
        assert submission.validation_status.as_csv_value() == "false"
        submission.cleanup()

    def test_missing_media_drops_submission(self, tmp_path, private_key, public_key, encrypted_submission_writer):
        path = encrypted_submission_writer(
            tmp_path, "one", public_key, "uuid:enc-1", ENCRYPTED_PAYLOAD, media={"photo.jpg": b"jpeg bytes"},
        )
        (path.parent / "photo.jpg.enc").unlink()
        recorder = ErrorRecorder()

        assert parse_submission(path, True, private_key, recorder) is None
        assert len(recorder.calls) == 1

    def test_wrong_private_key_drops_submission(self, tmp_path, public_key, encrypted_submission_writer):
        path = encrypted_submission_writer(tmp_path, "one", public_key, "uuid:enc-1", ENCRYPTED_PAYLOAD)
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        recorder = ErrorRecorder()

        assert parse_submission(path, True, other_key, recorder) is None
        assert recorder.calls[0][0] == path

    def test_invalid_aes_key_length_drops_submission(self, tmp_path, private_key, public_key, encrypted_submission_writer):
        path = encrypted_submission_writer(tmp_path, "one", public_key, "uuid:enc-1", ENCRYPTED_PAYLOAD)
        short_key = base64.b64encode(public_key.encrypt(b"k" * 20, RSA_OAEP_PADDING)).decode("ascii")
        manifest = re.sub(
            r"<base64EncryptedKey>[^<]*</base64EncryptedKey>",
            f"<base64EncryptedKey>{short_key}</base64EncryptedKey>",
            path.read_text(encoding="utf-8"),
        )
        path.write_text(manifest, encoding="utf-8")
        recorder = ErrorRecorder()

        assert parse_submission(path, True, private_key, recorder) is None
        assert recorder.calls[0][0] == path
        assert "AES key length" in recorder.calls[0][1]


class TestSignatureText:
    """Test the canonical text encrypted submissions are signed over."""

    def test_fixed_signature_text_and_digest(self, tmp_path):
        work_dir = tmp_path / "work"
        work_dir.mkdir()
        (work_dir / "photo.jpg").write_bytes(b"jpeg bytes")
        (work_dir / "submission.xml").write_bytes(b"<data/>")
        metadata = SubmissionMetaData(
            form_id="secret",
            instance_id="uuid:fixed",
            version="2024010101",
            base64_encrypted_key="S0VZ",
            media_names=("photo.jpg.enc",),
        )
        root = XmlElement.from_string("<data/>")
        original = Submission(tmp_path / "instance" / "submission.xml", tmp_path / "instance", root, metadata)
        decrypted = Submission(work_dir / "submission.xml", work_dir, root, metadata)

        text = decrypted.build_signature(original)

        assert text == (
            "secret\n"
            "2024010101\n"
            "S0VZ\n"
            "uuid:fixed\n"
            "photo.jpg::2ccd799f3a5130350478899447b6aa06\n"
            "submission.xml::9ea284d4e9f9b96b8351e9d325906800\n"
        )
        assert hashlib.md5(text.encode("utf-8")).hexdigest() == "57043a62a086afca28c830fceefbae3a"

    def test_signature_text_without_version(self, tmp_path):
        (tmp_path / "submission.xml").write_bytes(b"<data/>")
        metadata = SubmissionMetaData(form_id="secret", instance_id="uuid:fixed", base64_encrypted_key="S0VZ")
        submission = Submission(tmp_path / "submission.xml", tmp_path, XmlElement.from_string("<data/>"), metadata)

        assert submission.build_signature(submission) == (
            "secret\nS0VZ\nuuid:fixed\nsubmission.xml::9ea284d4e9f9b96b8351e9d325906800\n"
        )
