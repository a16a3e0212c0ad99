"""
CertVal — calibration certificate validation decision service.

Architecture:
    certval/
    ├── api/             # FastAPI routers (HTTP layer)
    ├── auth/            # Reviewer identity from JWT
    ├── db/              # SQLAlchemy models, engine, repositories
    ├── middleware/      # Request context, last-resort error handling
    ├── services/        # Phoenix API client
    └── validation/      # Decision workflow (validator, resolver, coordinator, ...)

Module Boundaries:
    - Phoenix is the system of record for approve/reject actions
    - The certificate store (Supabase) is shared with the evaluation pipeline
    - The batch orchestrator is reached only through evaluation_reports.created_at

Version: 1.0.0
"""

__version__ = "1.0.0"
