"""hypeledger: points ledger and attribution engine for social-sharing drops.

Effort is scored once. Reach is scored as it arrives.
The ledger is the only thing that remembers either.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "1.0.0"
