"""Best-effort completion of certificate chains with missing intermediates.

When a Secret carries only a leaf certificate (or a bundle that stops short
of a self-issued root), the issuers are fetched from the Authority
Information Access ``caIssuers`` URLs. Every failure is reported as
ChainCompletionError; callers log it and keep the chain they were given.
"""

from __future__ import annotations

import httpx
import structlog
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, pkcs7
from cryptography.x509.oid import AuthorityInformationAccessOID

from ingress_bfe.errors import ChainCompletionError

_log = structlog.get_logger(component="store.chain")

_MAX_DEPTH = 5


def _self_issued(cert: x509.Certificate) -> bool:
    return cert.issuer == cert.subject


def _issuer_url(cert: x509.Certificate) -> str | None:
    try:
        aia = cert.extensions.get_extension_for_class(x509.AuthorityInformationAccess).value
    except (x509.ExtensionNotFound, ValueError):
        return None
    for desc in aia:
        if desc.access_method != AuthorityInformationAccessOID.CA_ISSUERS:
            continue
        if isinstance(desc.access_location, x509.UniformResourceIdentifier):
            return desc.access_location.value
    return None


def is_chain_complete(certs: list[x509.Certificate]) -> bool:
    """True when the bundle links the leaf up to a self-issued certificate."""
    if not certs:
        return False
    current = certs[0]
    for _ in range(len(certs)):
        if _self_issued(current):
            return True
        issuer = next((c for c in certs if c is not current and c.subject == current.issuer), None)
        if issuer is None:
            return False
        current = issuer
    return False


def _load_issuer(content: bytes) -> x509.Certificate:
    try:
        if b"-----BEGIN" in content:
            return x509.load_pem_x509_certificate(content)
        try:
            return x509.load_der_x509_certificate(content)
        except ValueError:
            # some CAs publish a degenerate PKCS#7 bundle (.p7c)
            certs = pkcs7.load_der_pkcs7_certificates(content)
            if not certs:
                raise
            return certs[0]
    except ValueError as exc:
        raise ChainCompletionError(f"could not decode issuer certificate: {exc}") from exc


async def complete_chain(
    cert_pem: bytes,
    timeout: float = 10.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes | None:
    """Return the leaf plus fetched intermediates as PEM.

    Returns None when the supplied chain is already complete.
    """
    try:
        certs = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as exc:
        raise ChainCompletionError(f"could not decode certificate: {exc}") from exc
    if is_chain_complete(certs):
        return None

    leaf = certs[0]
    chain = [leaf]
    current = leaf
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
        for _ in range(_MAX_DEPTH):
            if _self_issued(current):
                break
            url = _issuer_url(current)
            if url is None:
                break
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise ChainCompletionError(f"fetching issuer from {url}: {exc}") from exc
            issuer = _load_issuer(response.content)
            _log.debug("issuer_fetched", url=url, subject=issuer.subject.rfc4514_string())
            if _self_issued(issuer):
                break
            chain.append(issuer)
            current = issuer

    if len(chain) == 1:
        raise ChainCompletionError("no intermediate certificate could be fetched")
    return b"".join(c.public_bytes(Encoding.PEM) for c in chain)
