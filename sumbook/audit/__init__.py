"""
Audit Package

Provides audit logging for all book mutations.
"""

from sumbook.audit.logger import AuditLogger, audit_log_path

__all__ = [
    "AuditLogger",
    "audit_log_path",
]
