# ============================================================================
# apps/extensions/services.py - Extension CRUD with config regeneration
# ============================================================================

import logging
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import SIP_REALM
from apps.reconcile.orchestrator import ReconcileOrchestrator, SyncResult
from apps.reconcile.records import md5_credential
from shared.exceptions import ValidationError
from .models import Extension
from .schemas import ExtensionCreate, ExtensionUpdate

logger = logging.getLogger(__name__)


class ExtensionService:
    """Every mutation commits the row, rewrites the extension's block and reloads"""

    def __init__(self, db: Session, orchestrator: ReconcileOrchestrator, realm: str = SIP_REALM):
        self.db = db
        self.orchestrator = orchestrator
        self.realm = realm

    def list_extensions(self, enabled: Optional[bool] = None) -> List[Extension]:
        query = self.db.query(Extension)
        if enabled is not None:
            query = query.filter(Extension.enabled == enabled)
        return query.order_by(Extension.extension_number).all()

    def get_extension(self, number: str) -> Optional[Extension]:
        return self.db.query(Extension).filter(Extension.extension_number == number).first()

    def _commit(self, action: str, number: str) -> Optional[str]:
        try:
            self.db.commit()
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to {action} extension {number}: {str(e)}")
            return f"Database error: {str(e)}"

    def _publish(self, number: str, deleted: bool = False) -> SyncResult:
        result = self.orchestrator.sync_one_to_external(self.db, "extension", number, missing_ok=deleted)
        result.database_changed = True
        return result

    def create_extension(self, data: ExtensionCreate) -> Tuple[Optional[Extension], SyncResult]:
        if self.get_extension(data.extension_number):
            raise ValidationError(f"Extension {data.extension_number} already exists")

        extension = Extension(
            extension_number=data.extension_number,
            name=data.name,
            secret_hash=md5_credential(data.extension_number, self.realm, data.secret),
            context=data.context,
            transport=data.transport,
            codecs=list(data.codecs),
            max_contacts=data.max_contacts,
            qualify_frequency=data.qualify_frequency,
            direct_media=data.direct_media,
            enabled=data.enabled,
            notes=data.notes,
        )
        self.db.add(extension)
        error = self._commit("create", data.extension_number)
        if error:
            return None, SyncResult(success=False, errors=[error])

        self.db.refresh(extension)
        logger.info(f"Created extension {extension.extension_number}")
        return extension, self._publish(extension.extension_number)

    def update_extension(self, number: str, data: ExtensionUpdate) -> Tuple[Optional[Extension], SyncResult]:
        extension = self.get_extension(number)
        if extension is None:
            return None, SyncResult(success=False, errors=[f"Extension {number} not found"])

        values = data.model_dump(exclude_unset=True)
        secret = values.pop("secret", None)
        if secret:
            extension.secret_hash = md5_credential(number, self.realm, secret)
        for field, value in values.items():
            if value is None and field not in ("name", "notes"):
                continue
            setattr(extension, field, value)

        error = self._commit("update", number)
        if error:
            return extension, SyncResult(success=False, errors=[error])

        self.db.refresh(extension)
        logger.info(f"Updated extension {number}")
        return extension, self._publish(number)

    def delete_extension(self, number: str) -> SyncResult:
        extension = self.get_extension(number)
        if extension is None:
            return SyncResult(success=False, errors=[f"Extension {number} not found"])

        self.db.delete(extension)
        error = self._commit("delete", number)
        if error:
            return SyncResult(success=False, errors=[error])

        logger.info(f"Deleted extension {number}")
        return self._publish(number, deleted=True)
