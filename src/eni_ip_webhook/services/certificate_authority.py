"""
Self-signed certificate authority for the webhook's serving certificate.

The API server only calls webhooks over TLS and verifies the server
certificate against the CA bundle in the MutatingWebhookConfiguration. This
module generates that CA and signs a serving certificate covering the
in-cluster DNS names of the webhook service.

Issuance happens in three steps, each failing with a CertificateError that
names the step:
1. Generate the CA key and self-signed CA certificate
2. Generate the serving key and a certificate signing request
3. Sign the request with the CA

Nothing here touches the cluster or the filesystem.
"""

import ipaddress
import logging
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from eni_ip_webhook.constants import (
    CERT_KEY_SIZE,
    CERT_SUBJECT_COUNTRY,
    CERT_SUBJECT_LOCALITY,
    CERT_SUBJECT_ORGANIZATION,
    CERT_SUBJECT_ORGANIZATIONAL_UNIT,
    CERT_SUBJECT_STATE,
    DEFAULT_CERT_VALIDITY_HOURS,
)
from eni_ip_webhook.errors import CertificateError
from eni_ip_webhook.models.identity import CertBundle

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = timedelta(hours=DEFAULT_CERT_VALIDITY_HOURS)
LOOPBACK_ADDRESS = ipaddress.IPv4Address("127.0.0.1")

# Tolerate API server clocks that lag behind the webhook's
CLOCK_SKEW = timedelta(minutes=5)


def service_dns_names(service: str, namespace: str) -> list[str]:
    """The conventional in-cluster DNS names of a service."""
    return [
        f"{service}.{namespace}",
        f"{service}.{namespace}.svc",
        f"{service}.{namespace}.svc.cluster",
        f"{service}.{namespace}.svc.cluster.local",
    ]


def _subject(common_name: str) -> x509.Name:
    return x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, CERT_SUBJECT_COUNTRY),
            x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, CERT_SUBJECT_STATE),
            x509.NameAttribute(NameOID.LOCALITY_NAME, CERT_SUBJECT_LOCALITY),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, CERT_SUBJECT_ORGANIZATION),
            x509.NameAttribute(
                NameOID.ORGANIZATIONAL_UNIT_NAME, CERT_SUBJECT_ORGANIZATIONAL_UNIT
            ),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )


def _private_key_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


class CertificateAuthority:
    """Issues a CA and serving certificate pair for the webhook."""

    def __init__(self, common_name: str, key_size: int = CERT_KEY_SIZE):
        """
        Initialize the certificate authority.

        Args:
            common_name: Common name of the CA, usually ``<service>.<namespace>``
            key_size: RSA key size for both the CA and the serving key
        """
        self.common_name = common_name
        self.key_size = key_size

    def issue(
        self, dns_names: list[str], validity: timedelta = DEFAULT_VALIDITY
    ) -> CertBundle:
        """
        Generate a fresh CA and sign a serving certificate for dns_names.

        Args:
            dns_names: DNS names of the webhook service; the first one is
                used as the serving certificate's common name
            validity: Validity window of both certificates

        Returns:
            PEM encoded CA certificate/key and serving certificate/key

        Raises:
            CertificateError: If any generation or signing step fails
        """
        if not dns_names:
            raise CertificateError("issue a certificate without any DNS names")

        not_before = datetime.now(UTC) - CLOCK_SKEW
        not_after = not_before + validity

        ca_key, ca_cert = self._create_ca(not_before, not_after)
        server_key, csr = self._create_csr(dns_names)
        server_cert = self._sign(ca_key, ca_cert, csr, not_before, not_after)

        logger.info(
            f"Issued webhook certificate for {', '.join(dns_names)} "
            f"valid until {not_after.isoformat()}"
        )

        try:
            return CertBundle(
                ca_cert=ca_cert.public_bytes(serialization.Encoding.PEM),
                ca_key=_private_key_pem(ca_key),
                server_cert=server_cert.public_bytes(serialization.Encoding.PEM),
                server_key=_private_key_pem(server_key),
            )
        except ValueError as e:
            raise CertificateError("encode the certificates as PEM", e) from e

    def _create_ca(
        self, not_before: datetime, not_after: datetime
    ) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        try:
            key = rsa.generate_private_key(
                public_exponent=65537, key_size=self.key_size
            )
            name = _subject(self.common_name)
            cert = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=True, path_length=None), critical=True
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
                    critical=False,
                )
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as e:
            raise CertificateError("create the CA certificate", e) from e
        return key, cert

    def _create_csr(
        self, dns_names: list[str]
    ) -> tuple[rsa.RSAPrivateKey, x509.CertificateSigningRequest]:
        try:
            key = rsa.generate_private_key(
                public_exponent=65537, key_size=self.key_size
            )
            san = x509.SubjectAlternativeName(
                [x509.IPAddress(LOOPBACK_ADDRESS)]
                + [x509.DNSName(name) for name in dns_names]
            )
            csr = (
                x509.CertificateSigningRequestBuilder()
                .subject_name(_subject(dns_names[0]))
                .add_extension(san, critical=False)
                .sign(key, hashes.SHA256())
            )
        except (ValueError, TypeError) as e:
            raise CertificateError("create the webhook signing request", e) from e
        return key, csr

    def _sign(
        self,
        ca_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        csr: x509.CertificateSigningRequest,
        not_before: datetime,
        not_after: datetime,
    ) -> x509.Certificate:
        try:
            if not csr.is_signature_valid:
                raise ValueError("signing request signature is invalid")
            san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            return (
                x509.CertificateBuilder()
                .subject_name(csr.subject)
                .issuer_name(ca_cert.subject)
                .public_key(csr.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None), critical=True
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=False,
                        key_encipherment=True,
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
                    x509.ExtendedKeyUsage(
                        [ExtendedKeyUsageOID.SERVER_AUTH, ExtendedKeyUsageOID.CLIENT_AUTH]
                    ),
                    critical=False,
                )
                .add_extension(san.value, critical=False)
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(csr.public_key()),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(
                        ca_key.public_key()
                    ),
                    critical=False,
                )
                .sign(ca_key, hashes.SHA256())
            )
        except (ValueError, TypeError, x509.ExtensionNotFound) as e:
            raise CertificateError("sign the webhook certificate", e) from e
