from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from storefront.core.config import settings

security = HTTPBearer(auto_error=False)

def decode_identity(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload  # contains sub (email), role, optional name/phone

def get_optional_identity(creds: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[dict]:
    # guests check out without a token
    if not creds:
        return None
    return decode_identity(creds.credentials)

def get_current_identity(identity: Optional[dict] = Depends(get_optional_identity)) -> dict:
    if identity is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return identity

def require_admin(identity: dict = Depends(get_current_identity)) -> dict:
    if identity.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return identity
