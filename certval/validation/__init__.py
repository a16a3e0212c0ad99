"""
Validation decision workflow.

Components:
- error_codes: closed rejection-reason enumerations + validator
- resolver: CalibrationId fallback chain (request -> store -> Phoenix)
- justification: rejection comment synthesized from the evaluation payload
- requeue: two-year created_at rewrite that re-queues evaluation
- upstream: Phoenix failure -> HTTP status taxonomy
- notifier: fire-and-forget decision webhook
- coordinator: Phoenix-first approve/reject saga
- queries: read-side status helpers
"""
