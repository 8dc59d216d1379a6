"""
Request dependencies: the system instance and the authenticated member
"""

from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..errors import PermissionDenied
from ..members import Member
from ..system import SaccoSystem


security = HTTPBearer(auto_error=False)


def get_system(request: Request) -> SaccoSystem:
    return request.app.state.system


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: SaccoSystem = Depends(get_system)
) -> Member:
    """Validate the bearer JWT issued by the auth service and resolve the member"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    member = system.users.get_user(str(user_id))
    if not member:
        raise HTTPException(status_code=401, detail="Unknown user")
    return member


def require_admin_user(user: Member = Depends(get_current_user)) -> Member:
    if not user.is_admin:
        raise PermissionDenied(f"User {user.id} is not an administrator")
    return user
