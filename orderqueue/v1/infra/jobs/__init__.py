"""
Job queue infrastructure for fulfillment orders.

This package provides a database-backed job system with:
- Priority/FIFO queue with recomputed queue positions
- Registry-based pluggable handlers
- Compare-and-set status transitions, retries and stuck job reclamation
- Per-job structured logs persisted alongside the queue
"""
