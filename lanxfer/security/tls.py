"""
Transport Security Bootstrap

Design Decision: Peer Credentials
=================================

Options Considered:
1. Pre-shared CA and signed server certificates
   - Real authentication, but needs provisioning on every host
2. Trust-on-first-use fingerprints
   - Needs persistent state on the client
3. Ephemeral self-signed certificate, client skips verification
   - Zero configuration
   - Encrypts and integrity-protects the stream
   - Does not authenticate the server

Decision: Ephemeral self-signed certificate
- Fresh RSA-2048 key and certificate per process, valid for 24 hours
- Never written anywhere that outlives context creation
- Clients connect with verification disabled; peer authentication is out of
  scope for a LAN drop box
"""

import hashlib
import logging
import ssl
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from dataclasses import dataclass

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..errors import TransportSetupError

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
DEFAULT_ORGANIZATION = 'LanXfer'
DEFAULT_VALIDITY = timedelta(hours=24)


@dataclass
class TransportContext:
    """
    TLS settings for both ends of a transfer connection.

    ``server`` offers the ephemeral certificate when listening; ``client``
    connects without validating whatever certificate the server presents.
    """
    server: ssl.SSLContext
    client: ssl.SSLContext
    certificate_pem: bytes
    fingerprint: str
    not_valid_after: datetime


def _generate_credential(organization: str, validity: timedelta):
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)

    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization)])
    not_before = datetime.now(timezone.utc)
    not_after = not_before + validity

    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                key_encipherment=True,
                content_commitment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=False,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
            critical=False,
        )
        .sign(private_key, hashes.SHA256())
    )

    return private_key, certificate, not_after


def _build_server_context(cert_pem: bytes, key_pem: bytes) -> ssl.SSLContext:
    """Load the credential into a listening context."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)

    # load_cert_chain only reads from paths
    with tempfile.TemporaryDirectory(prefix='lanxfer-') as tmp:
        cert_path = Path(tmp) / 'cert.pem'
        key_path = Path(tmp) / 'key.pem'
        cert_path.write_bytes(cert_pem)
        key_path.write_bytes(key_pem)
        context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))

    return context


def _build_client_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def create_transport_context(organization: str = DEFAULT_ORGANIZATION,
                             validity: timedelta = DEFAULT_VALIDITY) -> TransportContext:
    """
    Generate a fresh credential and the TLS contexts that use it.

    Args:
        organization: O= value for the certificate subject and issuer
        validity: How long the certificate is valid from now

    Returns:
        TransportContext usable by a listening and a connecting peer

    Raises:
        TransportSetupError: key generation, encoding or loading failed
    """
    try:
        private_key, certificate, not_after = _generate_credential(organization, validity)

        cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
        key_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

        server_context = _build_server_context(cert_pem, key_pem)
        client_context = _build_client_context()
    except (ValueError, TypeError, OSError, ssl.SSLError) as e:
        raise TransportSetupError(f"Failed to create transport context: {e}") from e

    fingerprint = hashlib.sha256(
        certificate.public_bytes(serialization.Encoding.DER)
    ).hexdigest()
    logger.debug(f"Generated ephemeral certificate {fingerprint[:16]}... "
                 f"valid until {not_after.isoformat()}")

    return TransportContext(
        server=server_context,
        client=client_context,
        certificate_pem=cert_pem,
        fingerprint=fingerprint,
        not_valid_after=not_after,
    )
