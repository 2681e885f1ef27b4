# ============================================================================
# apps/reconcile/__init__.py - Configuration reconciliation engine
# ============================================================================

from typing import Optional

from .orchestrator import ReconcileOrchestrator, SyncResult, AutoReconcileResult

_orchestrator: Optional[ReconcileOrchestrator] = None


def get_orchestrator() -> ReconcileOrchestrator:
    """Process wide orchestrator, shared so the auto reconcile throttle is shared"""
    global _orchestrator
    if _orchestrator is None:
        from shared.ami import EndpointStatusService
        _orchestrator = ReconcileOrchestrator(status_service=EndpointStatusService())
    return _orchestrator


__all__ = ["ReconcileOrchestrator", "SyncResult", "AutoReconcileResult", "get_orchestrator"]
