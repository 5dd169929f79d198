"""ingress-bfe: keeps a BFE data plane in sync with Kubernetes Ingress state."""

__version__ = "0.1.0"
