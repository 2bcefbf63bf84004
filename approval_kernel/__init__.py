"""
Approval Kernel - project approval routing

A deterministic workflow service for project approval chains with:
- Table-driven routing by budget band, scope and allocation flag
- Strictly sequential step resolution
- Document and compliance-program gates
- Resubmission that preserves completed approvals
- Append-only, hash-chained workflow history
"""

__version__ = "0.1.0"
