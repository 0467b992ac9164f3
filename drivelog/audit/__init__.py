"""Audit logging package."""

from drivelog.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
