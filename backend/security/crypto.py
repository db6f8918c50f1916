"""
Security helpers: content digests, session tokens and the TLS certificate.

LocalSend peers trust each other by network locality, so the certificate is
self-signed and only its fingerprint is published in the device info.
"""

import datetime
import hashlib
import logging
import secrets
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from config import APP_NAME, TOKEN_BYTES

logger = logging.getLogger(__name__)

HASH_BLOCK_SIZE = 1024 * 1024
CERT_FILE = "cert.pem"
KEY_FILE = "key.pem"
CERT_VALIDITY_DAYS = 3650


def compute_file_sha256(path: str | Path) -> str:
    """Return the lower-case hex SHA-256 of a file, read in blocks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def generate_token() -> str:
    """Random URL-safe token bound later to one (session, file) pair."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def _generate_certificate(cert_path: Path, key_path: Path) -> None:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, APP_NAME)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=CERT_VALIDITY_DAYS))
        .sign(key, hashes.SHA256())
    )
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


def ensure_certificate(config_dir: Path) -> tuple[Path, Path, str]:
    """
    Load or create the self-signed server certificate.

    Returns:
        (cert_path, key_path, fingerprint) where fingerprint is the
        upper-case hex SHA-256 of the DER-encoded certificate.
    """
    config_dir.mkdir(parents=True, exist_ok=True)
    cert_path = config_dir / CERT_FILE
    key_path = config_dir / KEY_FILE

    if not (cert_path.exists() and key_path.exists()):
        logger.info(f"Generating self-signed certificate in {config_dir}")
        _generate_certificate(cert_path, key_path)

    cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    fingerprint = cert.fingerprint(hashes.SHA256()).hex().upper()
    return cert_path, key_path, fingerprint
