"""Local store of TLS certificates extracted from Secrets.

Each Secret referenced by a route is validated, turned into a
CertificateRecord and written to ``<ssl_directory>/<namespace>-<name>.pem``
(certificate, optional intermediates, then the private key) with owner-only
permissions. CA bundles and CRLs are written next to it as
``ca-<namespace>-<name>.pem`` and ``crl-<namespace>-<name>.pem``.

Validation always happens before anything touches the disk, so rejected
material leaves both the stored record and the files of the previous version
in place.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import ipaddress
import os
import re
import tempfile
import threading

import structlog
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import ExtensionOID, NameOID

from ingress_bfe.errors import (
    CertificateNotFoundError,
    CertificatePersistError,
    ChainCompletionError,
    InvalidCAError,
    InvalidCRLError,
    InvalidPEMError,
    KeyPairMismatchError,
)
from ingress_bfe.models.certs import CertificateRecord
from ingress_bfe.models.resources import split_meta_namespace_key
from ingress_bfe.store.chain import complete_chain

_log = structlog.get_logger(component="store.certs")

DEFAULT_SSL_DIRECTORY = "/etc/ingress-controller/ssl"
READ_WRITE_BY_USER = 0o600
READ_BY_ALL = 0o644

_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?P<type>[A-Z0-9 ]+)-----\s*(?P<body>.*?)-----END (?P=type)-----",
    re.DOTALL,
)

# GeneralName CHOICE tags (RFC 5280, 4.2.1.6)
_SAN_TAG_EMAIL = 1
_SAN_TAG_DNS = 2
_SAN_TAG_IP = 7


# ---------------------------------------------------------------------------
# PEM / ASN.1 helpers
# ---------------------------------------------------------------------------


def decode_pem_blocks(data: bytes) -> list[tuple[str, bytes]]:
    """Return ``(type, der)`` for every PEM block in *data*, in order.

    ``x509.load_pem_x509_certificates`` only yields certificates and fails on
    the first bad block. Secrets mix key and certificate blocks whose type
    must be checked, and undecodable blocks are skipped, so the framing is
    split here and each DER body is handed to ``cryptography`` afterwards.
    """
    blocks = []
    for match in _PEM_BLOCK.finditer(data):
        body = b"".join(
            line.strip() for line in match.group("body").splitlines() if line.strip() and b":" not in line
        )
        try:
            der = base64.b64decode(body, validate=True)
        except (binascii.Error, ValueError):
            continue
        blocks.append((match.group("type").decode("ascii"), der))
    return blocks


def _read_tlv(data: bytes, offset: int) -> tuple[int, bool, int, bytes, int]:
    """Read one DER element at *offset*.

    Returns ``(class, constructed, tag, content, next_offset)``.
    """
    if offset >= len(data):
        raise ValueError("asn1: truncated element")
    first = data[offset]
    cls = first >> 6
    constructed = bool(first & 0x20)
    tag = first & 0x1F
    offset += 1
    if tag == 0x1F:
        tag = 0
        while True:
            if offset >= len(data):
                raise ValueError("asn1: truncated tag")
            b = data[offset]
            offset += 1
            tag = (tag << 7) | (b & 0x7F)
            if not b & 0x80:
                break
    if offset >= len(data):
        raise ValueError("asn1: truncated length")
    length = data[offset]
    offset += 1
    if length & 0x80:
        n = length & 0x7F
        if n == 0 or n > 4:
            raise ValueError("asn1: unsupported length encoding")
        if offset + n > len(data):
            raise ValueError("asn1: truncated length")
        length = int.from_bytes(data[offset : offset + n], "big")
        offset += n
    end = offset + length
    if end > len(data):
        raise ValueError("asn1: content exceeds buffer")
    return cls, constructed, tag, data[offset:end], end


def parse_san_extension(
    value: bytes,
) -> tuple[list[str], list[str], list[ipaddress.IPv4Address | ipaddress.IPv6Address]]:
    """Walk a DER-encoded SubjectAltName extension value.

    GeneralNames is a SEQUENCE of context-tagged choices; only rfc822Name,
    dNSName and iPAddress are collected. Returns
    ``(dns_names, email_addresses, ip_addresses)``.
    """
    cls, constructed, tag, body, end = _read_tlv(value, 0)
    if end != len(value):
        raise ValueError("x509: trailing data after X.509 extension")
    if not constructed or tag != 16 or cls != 0:
        raise ValueError("bad SAN sequence")

    dns_names: list[str] = []
    emails: list[str] = []
    ips: list[ipaddress.IPv4Address | ipaddress.IPv6Address] = []
    offset = 0
    while offset < len(body):
        _, _, tag, content, offset = _read_tlv(body, offset)
        if tag == _SAN_TAG_EMAIL:
            emails.append(content.decode("ascii", errors="replace"))
        elif tag == _SAN_TAG_DNS:
            dns_names.append(content.decode("ascii", errors="replace"))
        elif tag == _SAN_TAG_IP:
            if len(content) not in (4, 16):
                raise ValueError(f"x509: certificate contained IP address of length {len(content)}")
            ips.append(ipaddress.ip_address(content))
    return dns_names, emails, ips


def _sha1(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()  # noqa: S324 -- change detection only


def _public_key_der(key: object) -> bytes:
    return key.public_bytes(  # type: ignore[attr-defined]
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def _common_names(cert: x509.Certificate) -> list[str]:
    names: list[str] = []

    def add(name: str) -> None:
        if name and name not in names:
            names.append(name)

    for attr in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME):
        add(str(attr.value))

    try:
        extensions = list(cert.extensions)
    except ValueError as exc:
        _log.warning("certificate_extensions_unparseable", error=str(exc))
        return sorted(names)

    for ext in extensions:
        if ext.oid != ExtensionOID.SUBJECT_ALTERNATIVE_NAME:
            continue
        for dns in ext.value.get_values_for_type(x509.DNSName):
            add(dns)
        try:
            dns_names, _, _ = parse_san_extension(ext.value.public_bytes())
        except ValueError as exc:
            _log.warning("san_extension_parse_error", error=str(exc))
            continue
        for dns in dns_names:
            add(dns)
    return sorted(names)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def create_ssl_cert(cert: bytes, key: bytes, uid: str, chain: bytes | None = None) -> CertificateRecord:
    """Validate a certificate/key pair and build its record.

    *chain*, when given, replaces *cert* in the PEM bundle (it starts with
    the same leaf followed by intermediates).
    """
    bundle = (chain or cert).rstrip(b"\n") + b"\n" + key

    blocks = decode_pem_blocks(bundle)
    if not blocks:
        raise InvalidPEMError("no valid PEM formatted block found")
    block_type, der = blocks[0]
    if block_type != "CERTIFICATE":
        raise InvalidPEMError(
            "no certificate PEM data found, make sure certificate content starts with 'BEGIN CERTIFICATE'"
        )
    try:
        certificate = x509.load_der_x509_certificate(der)
    except ValueError as exc:
        raise InvalidPEMError(f"could not parse certificate: {exc}") from exc

    try:
        private_key = serialization.load_pem_private_key(key, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyPairMismatchError(f"certificate and private key does not have a matching public key: {exc}") from exc
    if _public_key_der(private_key.public_key()) != _public_key_der(certificate.public_key()):
        raise KeyPairMismatchError("certificate and private key does not have a matching public key")

    return CertificateRecord(
        uid=uid,
        certificate=certificate,
        pem_sha=_sha1(certificate.public_bytes(serialization.Encoding.DER)),
        cn=_common_names(certificate),
        expires=certificate.not_valid_after_utc,
        pem_cert_key=bundle.decode("utf-8", errors="replace"),
    )


def check_ca_cert(ca: bytes) -> list[x509.Certificate]:
    """Parse every PEM block of a CA bundle as a certificate."""
    certs = []
    for _, der in decode_pem_blocks(ca):
        try:
            certs.append(x509.load_der_x509_certificate(der))
        except ValueError as exc:
            raise InvalidCAError(f"could not parse CA certificate: {exc}") from exc
    if not certs:
        raise InvalidCAError("error decoding CA certificate/s")
    return certs


def create_ca_cert(ca: bytes, uid: str = "") -> CertificateRecord:
    """Build a CA-only record (Secrets used for client authentication)."""
    return CertificateRecord(uid=uid, ca_certificates=check_ca_cert(ca), ca_sha=_sha1(ca))


def check_crl(crl: bytes, name: str) -> x509.CertificateRevocationList:
    blocks = decode_pem_blocks(crl)
    if not blocks:
        raise InvalidCRLError(f"no valid PEM formatted block found in CRL {name}")
    block_type, der = blocks[0]
    if block_type != "X509 CRL":
        raise InvalidCRLError(
            f"CRL file {name} contains invalid data, and must be created only with PEM formatted certificates"
        )
    try:
        return x509.load_der_x509_crl(der)
    except ValueError as exc:
        raise InvalidCRLError(f"could not parse CRL {name}: {exc}") from exc


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class CertificateStore:
    """Thread-safe map of secret key -> CertificateRecord, backed by files."""

    def __init__(
        self,
        ssl_directory: str = DEFAULT_SSL_DIRECTORY,
        chain_completion: bool = False,
        chain_fetch_timeout: float = 10.0,
    ) -> None:
        self._dir = ssl_directory
        self._chain_completion = chain_completion
        self._chain_fetch_timeout = chain_fetch_timeout
        self._lock = threading.Lock()
        self._certs: dict[str, CertificateRecord] = {}

    # -- file naming ------------------------------------------------------

    def file_stem(self, key: str) -> str:
        namespace, name = split_meta_namespace_key(key)
        return f"{namespace}-{name}" if namespace else name

    def pem_file_name(self, key: str) -> str:
        return os.path.join(self._dir, f"{self.file_stem(key)}.pem")

    def ca_file_name(self, key: str) -> str:
        return os.path.join(self._dir, f"ca-{self.file_stem(key)}.pem")

    def crl_file_name(self, key: str) -> str:
        return os.path.join(self._dir, f"crl-{self.file_stem(key)}.pem")

    # -- public API -------------------------------------------------------

    async def put(
        self,
        key: str,
        cert: bytes,
        private_key: bytes,
        *,
        uid: str = "",
        ca: bytes | None = None,
        crl: bytes | None = None,
    ) -> CertificateRecord:
        """Validate, persist and store the TLS material of Secret *key*.

        Returns the stored record; when it is equal to the current one the
        current record is kept and nothing is rewritten.
        """
        chain = None
        if self._chain_completion:
            try:
                chain = await complete_chain(cert, timeout=self._chain_fetch_timeout)
            except ChainCompletionError as exc:
                _log.error("chain_completion_failed", secret=key, error=str(exc))

        record = create_ssl_cert(cert, private_key, uid, chain=chain)
        if ca:
            record.ca_certificates = check_ca_cert(ca)
            record.ca_sha = _sha1(ca)
        if crl:
            check_crl(crl, key)
        return self._commit(key, record, ca=ca, crl=crl)

    def put_ca(self, key: str, ca: bytes, *, uid: str = "", crl: bytes | None = None) -> CertificateRecord:
        """Store a CA-only Secret (no certificate/key pair)."""
        record = create_ca_cert(ca, uid)
        if crl:
            check_crl(crl, key)
        return self._commit(key, record, ca=ca, crl=crl)

    def get(self, key: str) -> CertificateRecord:
        with self._lock:
            record = self._certs.get(key)
        if record is None:
            raise CertificateNotFoundError(f"local SSL certificate {key} was not found")
        return record

    def delete(self, key: str) -> None:
        """Forget the record of *key* and remove its files."""
        with self._lock:
            record = self._certs.pop(key, None)
        if record is None:
            return
        _remove_files(record.pem_file_name, record.ca_file_name, record.crl_file_name)

    def list_keys(self) -> list[str]:
        with self._lock:
            return sorted(self._certs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._certs)

    # -- internals --------------------------------------------------------

    def _commit(
        self,
        key: str,
        record: CertificateRecord,
        *,
        ca: bytes | None,
        crl: bytes | None,
    ) -> CertificateRecord:
        namespace, name = split_meta_namespace_key(key)
        record.namespace = namespace
        record.name = name

        with self._lock:
            current = self._certs.get(key)
        if current is not None and current == record and current.crl_sha == (_sha1(crl) if crl else ""):
            _log.debug("certificate_unchanged", secret=key)
            return current

        try:
            os.makedirs(self._dir, exist_ok=True)
            if record.has_keypair:
                record.pem_file_name = self.pem_file_name(key)
                _write_file(record.pem_file_name, record.pem_cert_key.encode(), READ_WRITE_BY_USER)
            if ca:
                record.ca_file_name = self.ca_file_name(key)
                _write_file(record.ca_file_name, ca, READ_BY_ALL)
            if crl:
                record.crl_file_name = self.crl_file_name(key)
                _write_file(record.crl_file_name, crl, READ_BY_ALL)
                with open(record.crl_file_name, "rb") as fh:
                    record.crl_sha = _sha1(fh.read())
        except OSError as exc:
            raise CertificatePersistError(f"could not write certificate files for {key}: {exc}") from exc

        with self._lock:
            self._certs[key] = record
        if current is not None:
            # material dropped by this update
            _remove_files(
                *(
                    old
                    for old, new in (
                        (current.pem_file_name, record.pem_file_name),
                        (current.ca_file_name, record.ca_file_name),
                        (current.crl_file_name, record.crl_file_name),
                    )
                    if old and not new
                )
            )
        _log.info(
            "certificate_stored",
            secret=key,
            cn=record.cn,
            expires=record.expires.isoformat() if record.expires else None,
            ca=bool(ca),
            crl=bool(crl),
        )
        return record


def _remove_files(*paths: str) -> None:
    for path in paths:
        if not path:
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as exc:
            _log.warning("certificate_file_remove_failed", path=path, error=str(exc))

def _write_file(path: str, data: bytes, mode: int) -> None:
    """Atomically replace *path* with *data* and set *mode*."""
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise
