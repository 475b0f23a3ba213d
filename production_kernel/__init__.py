"""
Production Kernel - corrugated packaging workflow core

Tracks a job's planned steps through the shop floor with:
- A closed step-type set and a guarded per-step state machine
- Dependency checks across the parallel printing/corrugation group
- Exclusive machine claims for contended steps
- Dispatch reconciliation against QC, purchase order, and finished goods
- One-shot archival of completed jobs
"""

__version__ = "0.1.0"
