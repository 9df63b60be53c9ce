import logging

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .domain import Action, Decision, Principal, ResourceRef, ResourceType, role_name
from .identity import AuthError
from .policy import AccessPolicy, ScopeFilter
from .services import log_auth_event
from .stores import SqlFamilyLinkStore

logger = logging.getLogger(__name__)

# Same body for every denial so callers cannot probe which records exist.
FORBIDDEN_DETAIL = "Forbidden"


def get_current_principal(
    request: Request,
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    try:
        return request.app.state.identity_resolver.resolve(authorization)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_policy(db: Session = Depends(get_db_session)) -> AccessPolicy:
    return AccessPolicy(SqlFamilyLinkStore(db))


class Guard:
    """Per-request pairing of the resolved principal with the policy engine."""

    def __init__(self, principal: Principal, policy: AccessPolicy, db: Session):
        self.principal = principal
        self.policy = policy
        self.db = db

    def require(self, action: Action, resource: ResourceRef) -> None:
        self._enforce(self.policy.authorize(self.principal, action, resource), f"{action.value} {resource}")

    def require_listing(self, resource_type: ResourceType) -> ScopeFilter:
        self._enforce(
            self.policy.authorize_listing(self.principal, resource_type),
            f"list {resource_type.value}",
        )
        return self.policy.scope_filter(self.principal)

    def _enforce(self, decision: Decision, what: str) -> None:
        if decision.allowed:
            return
        reason = decision.reason.value if decision.reason else "unknown"
        logger.warning(f"Denied {what} for principal {self.principal.id} ({role_name(self.principal.role)}): {reason}")
        log_auth_event(self.db, str(self.principal.id), "Unauthorized Access", f"{what}: {reason}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)


def get_guard(
    principal: Principal = Depends(get_current_principal),
    policy: AccessPolicy = Depends(get_policy),
    db: Session = Depends(get_db_session),
) -> Guard:
    return Guard(principal, policy, db)
