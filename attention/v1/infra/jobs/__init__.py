"""
Insight job queue.

This package provides the background generation pipeline:
- Persistent queue with an optimistic claim fence (no row locks)
- One active job per product, enforced by a partial unique index
- Bounded retries on a fixed backoff schedule
- Run aggregation by periodic reconciliation
"""
