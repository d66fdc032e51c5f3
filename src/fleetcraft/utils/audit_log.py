"""Audit logging for applied changes and executed actions.

Each record is one JSON line on the dedicated ``fleetcraft.audit`` logger.
Nothing is written until ``setup_audit_logging`` attaches a handler, which
the CLI does at startup.
"""
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

audit_logger = logging.getLogger("fleetcraft.audit")
audit_logger.addHandler(logging.NullHandler())
audit_logger.propagate = False


def setup_audit_logging(log_dir: Optional[str] = None) -> Path:
    """Configure audit logging to file.

    Args:
        log_dir: Directory for audit logs. Defaults to ~/.fleetcraft/

    Returns:
        Path of the audit log file
    """
    if log_dir is None:
        log_dir = os.path.expanduser("~/.fleetcraft")

    Path(log_dir).mkdir(parents=True, exist_ok=True)
    audit_file = Path(log_dir) / "audit.log"

    audit_logger.setLevel(logging.INFO)
    audit_logger.handlers.clear()

    handler = RotatingFileHandler(
        audit_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    audit_logger.addHandler(handler)
    return audit_file


@dataclass
class AuditRecord:
    """One applied change or executed action."""
    timestamp: str
    engine: str  # reconcile | converge
    target: str  # resource ref or host alias
    operation: str  # create/update/delete or module name
    status: str
    details: dict = field(default_factory=dict)
    error: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    @classmethod
    def from_json(cls, json_str: str) -> "AuditRecord":
        return cls(**json.loads(json_str))


def log_change(ref: str, action: str, status: str, attributes: Optional[dict] = None,
               error: Optional[str] = None) -> AuditRecord:
    """Record a reconciliation change outcome."""
    record = AuditRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        engine="reconcile",
        target=ref,
        operation=action,
        status=status,
        details={"attributes": attributes or {}},
        error=error,
    )
    audit_logger.info(record.to_json())
    return record


def log_action(host: str, action: str, module: str, outcome: str,
               payload: Optional[dict[str, Any]] = None,
               error: Optional[str] = None) -> AuditRecord:
    """Record a convergence action outcome."""
    record = AuditRecord(
        timestamp=datetime.now(timezone.utc).isoformat(),
        engine="converge",
        target=host,
        operation=module,
        status=outcome,
        details={"action": action, "payload": payload or {}},
        error=error,
    )
    audit_logger.info(record.to_json())
    return record


def read_audit_log(log_file: str, target: Optional[str] = None,
                   limit: int = 100) -> list[AuditRecord]:
    """Read recent records, most recent first."""
    if not os.path.exists(log_file):
        return []

    records = []
    with open(log_file, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = AuditRecord.from_json(line)
            except (json.JSONDecodeError, TypeError):
                continue  # malformed line
            if target and record.target != target:
                continue
            records.append(record)

    return list(reversed(records[-limit:]))
