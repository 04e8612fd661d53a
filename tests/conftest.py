"""
Shared fixtures: form directories, RSA keys and encrypted submission builders.
"""

import base64
import hashlib
from pathlib import Path
from typing import Dict, Optional

import pytest
from cryptography.hazmat.decrepit.ciphers.modes import CFB
from cryptography.hazmat.primitives import padding as sympad
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from submission_export.crypto.cipher_factory import RSA_OAEP_PADDING, CipherFactory, derive_iv_seed

SIMPLE_FORM = """<?xml version="1.0"?>
<h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml"
        xmlns:jr="http://openrosa.org/javarosa" xmlns:orx="http://openrosa.org/xforms">
  <h:head>
    <h:title>Household Survey</h:title>
    <model>
      <instance>
        <data id="household" version="2024010101">
          <name/>
          <age/>
          <visited/>
          <location/>
          <photo/>
          <crops/>
          <g>
            <item/>
          </g>
          <meta>
            <instanceID/>
          </meta>
        </data>
      </instance>
      <bind nodeset="/data/name" type="string"/>
      <bind nodeset="/data/age" type="int"/>
      <bind nodeset="/data/visited" type="date"/>
      <bind nodeset="/data/location" type="geopoint"/>
      <bind nodeset="/data/photo" type="binary"/>
      <bind nodeset="/data/crops" type="string"/>
      <bind nodeset="/data/g/item" type="string"/>
      <bind nodeset="/data/meta/instanceID" type="string" readonly="true()"/>
    </model>
  </h:head>
  <h:body>
    <input ref="/data/name"/>
    <input ref="/data/age"/>
    <input ref="/data/visited"/>
    <input ref="/data/location"/>
    <upload ref="/data/photo" mediatype="image/*"/>
    <select ref="/data/crops">
      <item><label>Maize</label><value>maize</value></item>
      <item><label>Beans</label><value>beans</value></item>
    </select>
    <group ref="/data/g">
      <repeat nodeset="/data/g">
        <input ref="/data/g/item"/>
      </repeat>
    </group>
  </h:body>
</h:html>
"""

ENCRYPTED_FORM = """<?xml version="1.0"?>
<h:html xmlns="http://www.w3.org/2002/xforms" xmlns:h="http://www.w3.org/1999/xhtml">
  <h:head>
    <h:title>Secret Survey</h:title>
    <model>
      <instance>
        <data id="secret">
          <answer/>
          <photo/>
          <meta>
            <instanceID/>
          </meta>
        </data>
      </instance>
      <bind nodeset="/data/answer" type="string"/>
      <bind nodeset="/data/photo" type="binary"/>
      <submission method="form-data-post" base64RsaPublicKey="{public_key}"/>
    </model>
  </h:head>
  <h:body>
    <input ref="/data/answer"/>
    <upload ref="/data/photo" mediatype="image/*"/>
  </h:body>
</h:html>
"""


def write_submission(form_dir: Path, instance_name: str, xml: str, media: Optional[Dict[str, bytes]] = None) -> Path:
    """Write ``instances/<instance_name>/submission.xml`` plus any media files."""
    instance_dir = form_dir / "instances" / instance_name
    instance_dir.mkdir(parents=True, exist_ok=True)
    for name, content in (media or {}).items():
        (instance_dir / name).write_bytes(content)
    path = instance_dir / "submission.xml"
    path.write_text(xml, encoding="utf-8")
    return path


def household_submission(
    instance_id: str,
    submission_date: str = "2024-03-01T10:00:00.000Z",
    name: str = "Jane",
    items=("a", "b"),
    photo: str = "",
    crops: str = "maize",
) -> str:
    repeats = "".join(f"<g><item>{item}</item></g>" for item in items)
    return (
        f'<data id="household" version="2024010101" submissionDate="{submission_date}">'
        f"<name>{name}</name><age>34</age><visited>2024-02-28</visited>"
        f"<location>-1.28 36.82 1700 5</location><photo>{photo}</photo><crops>{crops}</crops>"
        f"{repeats}"
        f"<meta><instanceID>{instance_id}</instanceID></meta>"
        f"</data>"
    )


def _encrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    padder = sympad.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), CFB(iv)).encryptor()
    return encryptor.update(padded) + encryptor.finalize()


def write_encrypted_submission(
    form_dir: Path,
    instance_name: str,
    public_key,
    instance_id: str,
    payload: str,
    media: Optional[Dict[str, bytes]] = None,
    submission_date: str = "2024-03-01T10:00:00.000Z",
    form_id: str = "secret",
    tamper_signature: bool = False,
) -> Path:
    """Encrypt media then payload the way a data collection client does and write the manifest."""
    media = media or {}
    instance_dir = form_dir / "instances" / instance_name
    instance_dir.mkdir(parents=True, exist_ok=True)

    symmetric_key = hashlib.sha256(instance_id.encode("utf-8")).digest()
    wrapped_key = base64.b64encode(public_key.encrypt(symmetric_key, RSA_OAEP_PADDING)).decode("ascii")
    factory = CipherFactory(symmetric_key, derive_iv_seed(instance_id, symmetric_key))

    signature_parts = [form_id, wrapped_key, instance_id]
    for name, content in media.items():
        (instance_dir / f"{name}.enc").write_bytes(_encrypt(content, symmetric_key, factory.next().iv))
        signature_parts.append(f"{name}::{hashlib.md5(content).hexdigest()}")

    payload_bytes = payload.encode("utf-8")
    (instance_dir / "submission.xml.enc").write_bytes(_encrypt(payload_bytes, symmetric_key, factory.next().iv))
    signed_payload = payload_bytes + b" " if tamper_signature else payload_bytes
    signature_parts.append(f"submission.xml::{hashlib.md5(signed_payload).hexdigest()}")

    digest = hashlib.md5(("\n".join(signature_parts) + "\n").encode("utf-8")).digest()
    signature = base64.b64encode(public_key.encrypt(digest, RSA_OAEP_PADDING)).decode("ascii")

    media_xml = "".join(f"<media><file>{name}.enc</file></media>" for name in media)
    manifest = (
        f'<data xmlns="http://www.opendatakit.org/xforms/encrypted" id="{form_id}" encrypted="yes" '
        f'submissionDate="{submission_date}">'
        f"<base64EncryptedKey>{wrapped_key}</base64EncryptedKey>"
        f'<meta xmlns="http://openrosa.org/xforms"><instanceID>{instance_id}</instanceID></meta>'
        f"{media_xml}"
        f"<encryptedXmlFile>submission.xml.enc</encryptedXmlFile>"
        f"<base64EncryptedElementSignature>{signature}</base64EncryptedElementSignature>"
        f"</data>"
    )
    path = instance_dir / "submission.xml"
    path.write_text(manifest, encoding="utf-8")
    return path


@pytest.fixture(scope="session")
def private_key():
    """RSA key pair shared by the crypto tests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def public_key(private_key):
    return private_key.public_key()


@pytest.fixture
def pem_file(tmp_path, private_key):
    """Unencrypted PKCS#8 PEM file holding the private key."""
    path = tmp_path / "private.pem"
    path.write_bytes(private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return path


@pytest.fixture
def household_form_dir(tmp_path):
    """Form directory with the household XForm and no submissions yet."""
    form_dir = tmp_path / "household"
    form_dir.mkdir()
    (form_dir / "household.xml").write_text(SIMPLE_FORM, encoding="utf-8")
    return form_dir


@pytest.fixture
def encrypted_form_dir(tmp_path, public_key):
    """Form directory with an encrypted XForm."""
    form_dir = tmp_path / "secret"
    form_dir.mkdir()
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    xform = ENCRYPTED_FORM.format(public_key=base64.b64encode(der).decode("ascii"))
    (form_dir / "secret.xml").write_text(xform, encoding="utf-8")
    return form_dir


@pytest.fixture
def export_dir(tmp_path):
    return tmp_path / "exports"


@pytest.fixture
def submission_writer():
    """Function writing a plain submission (and media) into a form dir."""
    return write_submission


@pytest.fixture
def household_xml():
    """Function building a household submission document."""
    return household_submission


@pytest.fixture
def encrypted_submission_writer():
    """Function encrypting and writing a submission into a form dir."""
    return write_encrypted_submission
