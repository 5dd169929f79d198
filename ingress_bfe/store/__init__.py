"""Watch store, reference index and certificate store."""

from ingress_bfe.store.certs import CertificateStore
from ingress_bfe.store.channel import RingChannel
from ingress_bfe.store.class_filter import is_valid
from ingress_bfe.store.informer import Indexer, Informer
from ingress_bfe.store.refmap import ReferenceIndex
from ingress_bfe.store.store import WatchStore

__all__ = [
    "CertificateStore",
    "Indexer",
    "Informer",
    "ReferenceIndex",
    "RingChannel",
    "WatchStore",
    "is_valid",
]
