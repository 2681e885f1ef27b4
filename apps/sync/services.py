# ============================================================================
# apps/sync/services.py - Sync operations exposed over HTTP
# ============================================================================

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from apps.reconcile.orchestrator import ReconcileOrchestrator, SyncResult
from .schemas import MutationResponse, SyncOutcome

logger = logging.getLogger(__name__)


def to_response(result: SyncResult, message: str, data: Optional[Dict[str, Any]] = None,
                database_changed: Optional[bool] = None) -> MutationResponse:
    """Flatten an orchestrator result into an API response"""
    return MutationResponse(
        success=result.success,
        message=message if result.success else f"{message} (with errors)",
        database_changed=result.database_changed if database_changed is None else database_changed,
        file_changed=result.file_changed,
        engine_reloaded=result.engine_reloaded,
        reload_success=result.reload_success,
        reload_output=result.reload_output,
        errors=list(result.errors),
        data=data,
    )


def to_outcome(result: SyncResult, message: str) -> SyncOutcome:
    values = result.model_dump()
    success = values.pop("success")
    return SyncOutcome(
        success=success,
        message=message if success else f"{message} (with errors)",
        **values,
    )


class SyncService:
    """Directional and automatic synchronization for the HTTP layer"""

    def __init__(self, db: Session, orchestrator: ReconcileOrchestrator):
        self.db = db
        self.orchestrator = orchestrator

    def status(self) -> Dict[str, Any]:
        status = self.orchestrator.status(self.db)
        last_run = self.orchestrator.throttle.last_run_at
        status["last_auto_sync"] = last_run.isoformat() if last_run else None
        return status

    def to_external(self, kind: str, identity: Optional[str] = None) -> SyncOutcome:
        if identity:
            result = self.orchestrator.sync_one_to_external(self.db, kind, identity)
            return to_outcome(result, f"Synced {kind} {identity} to Asterisk")
        result = self.orchestrator.sync_all_to_external(self.db, kind)
        return to_outcome(result, f"Synced {len(result.processed)} entities to Asterisk")

    def from_external(self, kind: str, identity: Optional[str] = None) -> SyncOutcome:
        if identity:
            result = self.orchestrator.sync_one_from_external(self.db, kind, identity)
            return to_outcome(result, f"Synced {kind} {identity} from Asterisk")
        result = self.orchestrator.sync_all_from_external(self.db, kind)
        return to_outcome(result, f"Synced {len(result.processed)} entities from Asterisk")

    def auto(self, force: bool = False) -> SyncOutcome:
        result = self.orchestrator.auto_reconcile(self.db, force=force)
        if not result.ran:
            return to_outcome(result, "Auto sync skipped, cooldown active")
        return to_outcome(
            result,
            f"Auto sync imported {len(result.imported)}, exported {len(result.exported)}, "
            f"found {len(result.conflicts)} conflicts"
        )
