"""Exception hierarchy for ingress-bfe.

Recoverable errors (lookup misses, rejected certificate material, chain
completion failures) are caught by the watch handlers, logged, and skipped.
Fatal errors (data plane start failure) propagate to the application root.
"""

from __future__ import annotations


class IngressBfeError(Exception):
    """Base class for every error raised by this package."""


class NotFoundError(IngressBfeError, LookupError):
    """An object is not (yet) present in a local cache."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} {key!r} not found")
        self.kind = kind
        self.key = key


class CertificateError(IngressBfeError):
    """TLS material in a Secret was rejected."""


class InvalidPEMError(CertificateError):
    """No usable PEM block, or the block has the wrong type."""


class KeyPairMismatchError(CertificateError):
    """The private key does not belong to the certificate."""


class InvalidCAError(CertificateError):
    """The CA bundle contains no parseable certificate."""


class InvalidCRLError(CertificateError):
    """The CRL block is missing, mistyped, or does not parse."""


class CertificatePersistError(CertificateError):
    """Validated material could not be written to disk."""


class CertificateNotFoundError(IngressBfeError, LookupError):
    """No local certificate record exists for a secret key."""


class ChainCompletionError(IngressBfeError):
    """Missing intermediates could not be fetched. Never fatal."""


class QueueKeyError(IngressBfeError):
    """A stable identity could not be derived for an enqueued object."""


class DataPlaneStartError(IngressBfeError):
    """The data plane binary could not be started."""


class ShutdownInProgressError(IngressBfeError):
    """stop() was called on a controller that is already stopping."""


class PodInfoError(IngressBfeError):
    """The controller's own Pod could not be identified."""
