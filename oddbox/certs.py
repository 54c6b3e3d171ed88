"""TLS certificates: PEM handling, self-signed generation and per-host resolution."""

from __future__ import annotations

import base64
import binascii
import contextlib
import ipaddress
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = ".odd_box_cache"
RENEWAL_THRESHOLD_DAYS = 30

_PEM_BLOCK = re.compile(
    r"-----BEGIN ([A-Z0-9 ]+)-----\s*(.*?)\s*-----END \1-----", re.DOTALL
)


def _pem_sections(text: str, label: str) -> list[str]:
    return [body for found, body in _PEM_BLOCK.findall(text) if found == label]


def _decode_body(body: str) -> bytes:
    return base64.b64decode("".join(body.split()), validate=True)


def extract_cert_from_pem_str(text: str) -> list[bytes]:
    """DER encodings of every readable certificate in PEM text."""
    certs = []
    for body in _pem_sections(text, "CERTIFICATE"):
        with contextlib.suppress(binascii.Error, ValueError):
            certs.append(_decode_body(body))
    return certs


def get_certs_from_path(path: str | Path) -> list[bytes]:
    """DER encodings of every readable certificate in a PEM file."""
    return extract_cert_from_pem_str(Path(path).read_text(encoding="utf-8", errors="replace"))


def _pkcs8_keys(text: str) -> list[bytes]:
    keys = []
    for body in _pem_sections(text, "PRIVATE KEY"):
        try:
            keys.append(_decode_body(body))
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Malformed PKCS8-encoded private key: {exc}") from exc
    return keys


def extract_priv_key_from_pem(text: str) -> bytes:
    """The single PKCS8 private key in PEM text, DER encoded."""
    keys = _pkcs8_keys(text)
    if not keys:
        raise ValueError("No PKCS8-encoded private key found!")
    if len(keys) > 1:
        raise ValueError("More than one PKCS8-encoded private key found!")
    return keys[0]


def get_priv_key_from_path(path: str | Path) -> bytes:
    """The single PKCS8 private key in a PEM file, DER encoded."""
    keys = _pkcs8_keys(Path(path).read_text(encoding="utf-8", errors="replace"))
    if not keys:
        raise ValueError(f"No PKCS8-encoded private key found in {path}")
    if len(keys) > 1:
        raise ValueError(f"More than one PKCS8-encoded private key found in {path}")
    return keys[0]


def _subject_alt_name(hostname: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(hostname))
    except ValueError:
        return x509.DNSName(hostname)


def generate_cert_if_not_exist(
    hostname: str, cert_path: str | Path, key_path: str | Path
) -> None:
    """Create a self-signed certificate and key for a host unless both already exist."""
    cert_file, key_file = Path(cert_path), Path(key_path)
    cert_exists, key_exists = cert_file.exists(), key_file.exists()

    if cert_exists and key_exists:
        logger.debug("Using existing certificate for %s", hostname)
        return
    if cert_exists != key_exists:
        raise ValueError(
            "Missing key or crt for this hostname. Remove both if you want to generate a new "
            "set, or add the missing one."
        )

    logger.debug("Generating new certificate for site '%s'", hostname)
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "self signed cert")])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(datetime(1975, 1, 1, tzinfo=timezone.utc))
        .not_valid_after(datetime(4096, 1, 1, tzinfo=timezone.utc))
        .add_extension(x509.SubjectAlternativeName([_subject_alt_name(hostname)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    # write failures surface later, when the files are read back
    with contextlib.suppress(OSError):
        cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    with contextlib.suppress(OSError):
        key_file.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.PKCS8,
                serialization.NoEncryption(),
            )
        )


@dataclass(frozen=True, eq=False)
class CertifiedKey:
    """A certificate chain (DER, end entity first) together with its private key."""

    cert_chain: tuple[bytes, ...]
    key: Any

    def end_entity_cert(self) -> bytes:
        if not self.cert_chain:
            raise ValueError("certificate chain is empty")
        return self.cert_chain[0]


def _days_to_expiration(cert: CertifiedKey) -> int | None:
    """Whole days left on the end-entity certificate, or None when outside its validity."""
    parsed = x509.load_der_x509_certificate(cert.end_entity_cert())
    now = datetime.now(timezone.utc)
    if not parsed.not_valid_before_utc <= now <= parsed.not_valid_after_utc:
        return None
    return (parsed.not_valid_after_utc - now).days


class DynamicCertResolver:
    """Picks the certificate to present for a server name, creating self-signed ones on demand."""

    def __init__(
        self,
        enable_lets_encrypt: bool = False,
        lets_encrypt_account_email: str | None = None,
        cache_dir: str | Path = DEFAULT_CACHE_DIR,
    ) -> None:
        self._lock = threading.Lock()
        self._lets_encrypt_enabled = enable_lets_encrypt
        self.lets_encrypt_account_email = lets_encrypt_account_email or ""
        self.cache_dir = Path(cache_dir)
        self._self_signed: dict[str, CertifiedKey] = {}
        self._lets_encrypt: dict[str, CertifiedKey] = {}

    @property
    def lets_encrypt_enabled(self) -> bool:
        with self._lock:
            return self._lets_encrypt_enabled

    def enable_lets_encrypt(self) -> None:
        with self._lock:
            self._lets_encrypt_enabled = True

    def disable_lets_encrypt(self) -> None:
        with self._lock:
            self._lets_encrypt_enabled = False

    def add_self_signed_cert_to_cache(self, domain: str, cert: CertifiedKey) -> None:
        self._self_signed[domain] = cert

    def add_lets_encrypt_signed_cert_to_mem_cache(self, domain: str, cert: CertifiedKey) -> None:
        self._lets_encrypt[domain] = cert

    @staticmethod
    def _still_usable(cache: dict[str, CertifiedKey], domain: str, kind: str) -> CertifiedKey | None:
        cert = cache.get(domain)
        if cert is None:
            return None
        try:
            days = _days_to_expiration(cert)
        except ValueError as exc:
            logger.warning(
                "Failed to parse the %s cert for %s: %s. If this issue persists, try removing "
                "the domain from the cache dir.",
                kind, domain, exc,
            )
            cache.pop(domain, None)
            return None
        if days is None:
            logger.warning("The %s certificate for %s has expired.", kind, domain)
            cache.pop(domain, None)
            return None
        if days < RENEWAL_THRESHOLD_DAYS:
            logger.info(
                "Dropping the %s cert for %s: less than %d days remaining (%d days).",
                kind, domain, RENEWAL_THRESHOLD_DAYS, days,
            )
            cache.pop(domain, None)
            return None
        return cert

    def get_self_signed_cert_from_cache(self, domain: str) -> CertifiedKey | None:
        """The cached self-signed certificate, unless it is near or past expiry."""
        return self._still_usable(self._self_signed, domain, "self-signed")

    def get_lets_encrypt_signed_cert_from_mem_cache(self, domain: str) -> CertifiedKey | None:
        """The cached lets-encrypt certificate, unless it is near or past expiry."""
        return self._still_usable(self._lets_encrypt, domain, "LE")

    def resolve(self, server_name: str | None) -> CertifiedKey | None:
        """The certificate to present for a TLS client hello carrying this server name."""
        if not server_name:
            return None

        if self.lets_encrypt_enabled:
            cert = self.get_lets_encrypt_signed_cert_from_mem_cache(server_name)
            if cert is not None:
                return cert

        cert = self.get_self_signed_cert_from_cache(server_name)
        if cert is not None:
            return cert

        host_dir = self.cache_dir / server_name
        try:
            host_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Could not create directory: %s", exc)
            return None

        cert_path = host_dir / "cert.pem"
        key_path = host_dir / "key.pem"
        try:
            generate_cert_if_not_exist(server_name, cert_path, key_path)
        except ValueError as exc:
            logger.error("Could not generate cert: %s", exc)
            return None

        try:
            chain = get_certs_from_path(cert_path)
        except OSError:
            logger.error("Failed to read cert: %s", cert_path)
            return None
        if not chain:
            logger.warning("Empty certificate chain for %s", server_name)
            return None

        try:
            key_der = get_priv_key_from_path(key_path)
            key = serialization.load_der_private_key(key_der, password=None)
        except (OSError, ValueError, TypeError) as exc:
            logger.error("Failed to read private key %s: %s", key_path, exc)
            return None

        result = CertifiedKey(cert_chain=tuple(chain), key=key)
        self._self_signed[server_name] = result
        return result