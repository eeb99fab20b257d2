"""Domain models and engines for the crypto ledger and tax calculations.

This package holds the canonical event model, the running per-asset ledger and
the cost-basis engines. Everything here is in-memory and deterministic: derived
state is rebuilt by replaying events, never patched in place.
"""

__all__ = [
    "base_types",
    "cost_basis",
    "events",
    "ledger",
    "pricing",
]
