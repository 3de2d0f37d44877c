"""CI job status tracking and pipeline status aggregation.

This package provides the core of CI status bookkeeping:
- A per-job status state machine with optimistic concurrency
- Latest-attempt selection across retried jobs
- Stage ordering and composite stage/pipeline statuses
- Post-commit hooks for downstream automation on success
"""
