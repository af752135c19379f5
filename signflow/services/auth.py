from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from firebase_admin import auth as firebase_auth

from signflow.core.context import WorkflowContext
from signflow.core.settings import settings

security = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    uid: str
    email: str
    name: Optional[str] = None


# Test tokens for development; refused in production
MOCK_TOKENS = {
    "mock-student-token": CurrentUser("student-1", "student@example.com", "Student One"),
    "mock-parent-token": CurrentUser("parent-1", "parent@example.com", "Parent One"),
    "mock-teacher-token": CurrentUser("teacher-1", "teacher@example.com", "Teacher One"),
    "mock-company-token": CurrentUser("company-1", "company@example.com", "Company Rep"),
    "mock-tutor-token": CurrentUser("tutor-1", "tutor@example.com", "Tutor One"),
    "mock-head-token": CurrentUser("head-1", "head@example.com", "Head One"),
    "mock-staff-token": CurrentUser("staff-1", "cpe@example.com", "School Life Office"),
}


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    token = credentials.credentials
    if token in MOCK_TOKENS and not settings.is_production:
        return MOCK_TOKENS[token]

    try:
        decoded_token = firebase_auth.verify_id_token(token)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired Firebase token",
        )
    email = decoded_token.get("email")
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token carries no email address")
    full_name = decoded_token.get("name")
    if not full_name:
        # Try to build from given_name and family_name if available
        given = decoded_token.get("given_name", "")
        family = decoded_token.get("family_name", "")
        full_name = (given + " " + family).strip() or None
    return CurrentUser(uid=decoded_token["uid"], email=email, name=full_name)


def get_workflow_context(
    user: CurrentUser = Depends(get_current_user),
    x_school_id: Optional[str] = Header(None),
) -> WorkflowContext:
    return WorkflowContext(account_id=user.uid, school_id=x_school_id or None, demo_mode=settings.is_demo)
