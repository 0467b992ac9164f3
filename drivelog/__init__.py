"""
drivelog - Source Package

A personal driving log backend: trips, projects, supporting documents and
compliance reports, built on an append-only, hash-chained trip ledger.

DESIGN PRINCIPLES:
1. Trips are never edited in place - every change is a new ledger entry
2. Corrections and deletions always carry a human-readable reason
3. The current trip list is derived from the ledger, never stored as truth
4. Integrity can be proven after the fact
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "drivelog Team"
