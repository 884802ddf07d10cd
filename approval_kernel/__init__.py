"""
Approval Kernel

A multi-stage approval workflow engine for financial documents:
- Ordered, configurable approval stages per document type
- Data-driven stage permissions (capabilities + role/user assignment)
- Atomic, version-guarded state transitions
- Append-only, hash-chained action history
"""

__version__ = "0.1.0"
