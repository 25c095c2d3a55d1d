"""Audit logging package."""

from balance_engine.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
