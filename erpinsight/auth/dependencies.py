"""FastAPI dependencies for authentication."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from erpinsight.database.database import get_db
from erpinsight.database.erp_models import UserDB
from erpinsight.auth.jwt import get_principal_from_token
from erpinsight.models.user import Principal

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> Principal:
    """Resolve the caller from the bearer token.

    The role comes from the token; name and email are filled from the ERP user
    directory when the user is known there.

    Raises:
        HTTPException: 401 if the token is missing, invalid or expired
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    principal = get_principal_from_token(credentials.credentials)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_db = db.query(UserDB).filter(UserDB.id == principal.user_id).first()
    if user_db is not None:
        principal.name = user_db.name
        principal.email = user_db.email
    return principal
