import ssl
from datetime import datetime, timedelta, timezone

import pytest
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from lanxfer.errors import TransportSetupError
from lanxfer.security import create_transport_context


def test_certificate_identity_and_validity(transport):
    cert = x509.load_pem_x509_certificate(transport.certificate_pem)

    org = cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value
    assert org == 'LanXfer'
    assert cert.issuer == cert.subject

    remaining = transport.not_valid_after - datetime.now(timezone.utc)
    assert timedelta(hours=23) < remaining <= timedelta(hours=24)


def test_custom_organization_and_validity():
    context = create_transport_context(organization='Test Org', validity=timedelta(hours=1))
    cert = x509.load_pem_x509_certificate(context.certificate_pem)

    assert cert.subject.get_attributes_for_oid(NameOID.ORGANIZATION_NAME)[0].value == 'Test Org'
    assert context.not_valid_after - datetime.now(timezone.utc) <= timedelta(hours=1)


def test_client_does_not_verify_server(transport):
    assert transport.client.verify_mode == ssl.CERT_NONE
    assert transport.client.check_hostname is False


def test_every_context_gets_a_fresh_credential(transport):
    other = create_transport_context()
    assert other.fingerprint != transport.fingerprint
    assert other.certificate_pem != transport.certificate_pem


def test_key_generation_failure(monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("no entropy")

    monkeypatch.setattr(rsa, 'generate_private_key', broken)

    with pytest.raises(TransportSetupError):
        create_transport_context()
