"""
Audit Trail Services Module

Contains the write path, read path and export of the audit trail.
"""

from audittrail.services.audit_writer import AuditWriter, AuditWriteResult, AuditWriteError
from audittrail.services.history_reconciler import HistoryReconciler, HistoryResult
from audittrail.services.audit_export import AuditExporter
from audittrail.services.identity_resolver import IdentityResolver, SqlUserIdentityResolver
from audittrail.services.legacy_log import LegacyAuditLog

__all__ = [
    "AuditWriter",
    "AuditWriteResult",
    "AuditWriteError",
    "HistoryReconciler",
    "HistoryResult",
    "AuditExporter",
    "IdentityResolver",
    "SqlUserIdentityResolver",
    "LegacyAuditLog",
]
