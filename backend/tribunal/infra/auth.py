"""Authentication helpers for FastAPI endpoints.

Bearer JWTs are always honoured. In development the ``X-User-Id`` and
``X-User-Roles`` headers are accepted as well so local tools and tests can
act as any principal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from tribunal.infra import jwt as jwt_helper
from tribunal.settings import settings

ROLE_MODERATOR = "moderator"
ROLE_ADMIN = "admin"


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	roles: Tuple[str, ...] = ()
	handle: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role in self.roles

	@property
	def is_admin(self) -> bool:
		return self.has_role(ROLE_ADMIN)

	@property
	def is_moderator(self) -> bool:
		return self.has_role(ROLE_MODERATOR) or self.is_admin


_bearer_scheme = HTTPBearer(auto_error=False)


def _split_roles(raw: object) -> Tuple[str, ...]:
	if isinstance(raw, (list, tuple)):
		return tuple(str(r).strip() for r in raw if str(r).strip())
	if isinstance(raw, str):
		return tuple(part.strip() for part in raw.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# All decode failures surface as invalid_token
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
	handle = payload.get("handle")
	return AuthenticatedUser(
		id=str(payload["sub"]).strip(),
		roles=_split_roles(payload.get("roles") or payload.get("role")),
		handle=str(handle) if handle is not None else None,
	)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)
	if settings.is_dev() and x_user_id:
		return AuthenticatedUser(id=x_user_id, roles=_split_roles(x_user_roles or ""))
	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")


async def get_staff_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	if user.is_moderator:
		return user
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="staff_role_required")


async def get_admin_user(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
	if user.is_admin:
		return user
	raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="insufficient_role")
