"""
Back-office component wiring and the FastAPI dependency that hands it out
"""

from typing import Optional

from fastapi import HTTPException

from ..storage import InMemoryStorage, SQLiteStorage, StorageInterface
from ..audit import AuditTrail
from ..customers import CustomerManager
from ..loans import LoanManager
from ..approvals import ApprovalQueue
from ..team import TeamManager
from ..exceptions import NotFoundError
from ..config import get_config


class BackOfficeSystem:
    """Microfinance back office with all components initialized"""

    def __init__(self, use_sqlite: bool = True, storage: Optional[StorageInterface] = None):
        config = get_config()

        if storage is not None:
            self.storage = storage
        elif use_sqlite:
            self.storage = SQLiteStorage(config.sqlite_path)
        else:
            self.storage = InMemoryStorage()

        self.audit_trail = AuditTrail(self.storage, enabled=config.enable_audit_logging)
        self.customer_manager = CustomerManager(self.storage, self.audit_trail)
        self.loan_manager = LoanManager(self.storage, self.audit_trail, self.customer_manager)
        self.team_manager = TeamManager(self.storage, self.audit_trail, self.customer_manager)
        self.approval_queue = ApprovalQueue(
            self.storage, self.audit_trail, self.customer_manager, self.loan_manager
        )

    def close(self) -> None:
        self.storage.close()


_system: Optional[BackOfficeSystem] = None


def get_back_office() -> BackOfficeSystem:
    """Dependency returning the process-wide back office, created on first use"""
    global _system
    if _system is None:
        _system = BackOfficeSystem(use_sqlite=get_config().use_sqlite)
    return _system


def http_error(exc: ValueError) -> HTTPException:
    """404 for missing records, 400 for every other rejected operation"""
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def tagged(kind: str, items: list) -> dict:
    """List response envelope shared by every collection endpoint"""
    return {"kind": kind, "count": len(items), "items": items}
