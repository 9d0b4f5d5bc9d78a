from typing import Annotated
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from ..core import security
from ..core.errors import ConfigurationError
from ..services.authorization import Principal
from ..services.scheduling_service import SchedulingEngine


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token", auto_error=False)


def get_engine(request: Request) -> SchedulingEngine:
    engine = getattr(request.app.state, "scheduling_engine", None)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not ready")
    return engine


def get_principal(token: Annotated[str | None, Depends(oauth2_scheme)]) -> Principal:
    if not token:
        return Principal.anonymous()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        payload = security.decode_access_token(token)
    except JWTError as exc:
        raise credentials_exception from exc
    role = payload.get("role")
    subject = payload.get("sub")
    if role is None:
        raise credentials_exception
    try:
        subject_id = int(subject) if subject is not None else None
        return Principal.build(role, subject_id)
    except (ValueError, ConfigurationError) as exc:
        raise credentials_exception from exc
