from rtm_triage.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
