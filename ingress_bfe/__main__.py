"""Entry point for `python -m ingress_bfe`.

Usage:
    python -m ingress_bfe
"""

from __future__ import annotations

from ingress_bfe.app import run

run()
