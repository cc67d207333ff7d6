"""
GST Kernel

Value objects, DTOs, typed exceptions, structured logging and persistence
primitives shared by the ITC reconciliation and ledger engine:
- Exact decimal Money (never float)
- Year+month filing periods
- Purchase / counterparty / ledger / alert records
- Typed error taxonomy with machine-readable codes
"""

__version__ = "0.1.0"
