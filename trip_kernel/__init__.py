"""
Trip Kernel - approval workflow and project budget ledger

Arbitrates multi-step approval of cost-bearing trip requests with:
- Deterministic, stepOrder-driven workflow advancement
- Append-only project budget ledger with running balances
- Per-request and per-project serialization
- Best-effort audit trail
"""

__version__ = "0.1.0"
