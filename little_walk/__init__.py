"""
Little Walk - walk request lifecycle and walker claim coordination.

This package lets dog owners post walk requests and lets many walkers
contend for them concurrently. Every lifecycle transition is a single
atomic conditional update at the storage backend, so two walkers can never
both hold the same claim.
"""

__version__ = "0.1.0"
