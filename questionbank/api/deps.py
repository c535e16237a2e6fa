from fastapi import Depends
from sqlalchemy.orm import Session

from questionbank.core.auth import Principal, get_current_principal
from questionbank.core.database import get_db
from questionbank.core.events import EventDispatcher, make_dispatcher
from questionbank.core.exceptions import NotFoundError, PermissionDenied
from questionbank.models.orm import Context
from questionbank.services.capabilities import CapabilityChecker


def get_checker(db: Session = Depends(get_db),
                principal: Principal = Depends(get_current_principal)) -> CapabilityChecker:
    return CapabilityChecker(db, principal)


def get_events(db: Session = Depends(get_db), principal: Principal = Depends(get_current_principal)) -> EventDispatcher:
    return make_dispatcher(db, principal.id)


def load_context(db: Session, context_id: int) -> Context:
    context = db.get(Context, context_id)
    if context is None:
        raise NotFoundError("context", context_id)
    return context


def require_capability(checker: CapabilityChecker, capability: str, context: Context) -> None:
    if not checker.has_capability(capability, context):
        raise PermissionDenied(capability)
