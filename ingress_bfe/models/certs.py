"""Local SSL certificate record."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cryptography import x509


@dataclass(eq=False)
class CertificateRecord:
    """A validated certificate derived from a Secret.

    Equality covers only the fields that matter to the data plane: CA hash,
    certificate hash, expiry, owning Secret UID and the common-name set
    (order-independent). File paths, the PEM bundle text and parsed objects
    are derived from those and do not take part.
    """

    name: str = ""
    namespace: str = ""
    uid: str = ""
    cn: list[str] = field(default_factory=list)
    expires: datetime | None = None
    pem_sha: str = ""
    ca_sha: str = ""
    crl_sha: str = ""
    pem_file_name: str = ""
    ca_file_name: str = ""
    crl_file_name: str = ""
    pem_cert_key: str = field(default="", repr=False)
    certificate: x509.Certificate | None = field(default=None, repr=False)
    ca_certificates: list[x509.Certificate] = field(default_factory=list, repr=False)

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, CertificateRecord):
            return NotImplemented
        if self.ca_sha != other.ca_sha:
            return False
        if self.pem_sha != other.pem_sha:
            return False
        if self.expires != other.expires:
            return False
        if self.uid != other.uid:
            return False
        return set(self.cn) == set(other.cn)

    __hash__ = None  # type: ignore[assignment]

    @property
    def has_keypair(self) -> bool:
        return bool(self.pem_sha)
