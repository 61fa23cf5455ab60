"""
Document lifecycle module.

One document, one process:
- Checkout is an exclusive advisory lock; only its holder (or an override-capable role) releases it
- Finalize makes the document read-only and drops any lock
- Every accepted mutation bumps the revision clients use to detect staleness
- Accepted actions are recorded to the append-only audit trail
"""
