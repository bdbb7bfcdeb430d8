from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Security, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import TypeAdapter
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..models.donor import DonorCreate
from ..models.user import AuthResponse, Principal, StaffCreate, TaggedPrincipal, UserCreate, UserPublic, UserRole
from ..services import Services, get_services
from ..utils.documents import to_object_id
from ..utils.logging import log_db_error
from ..utils.security import create_access_token, decode_token, hash_password, verify_password

router = APIRouter(prefix="/auth", tags=["auth"])
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

_principal = TypeAdapter(TaggedPrincipal)


def principal_from_document(document: Dict[str, Any], role: str) -> Principal:
    """Build the tagged principal for a donor document or a ``users`` account."""
    fields = {**document, "id": str(document["_id"]), "role": role}
    return _principal.validate_python(fields)


def service_unavailable(context: str, exc: Exception, detail: str) -> HTTPException:
    log_db_error(context, exc)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)


@router.post("/register/donor", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
async def register_donor(payload: DonorCreate, services: Services = Depends(get_services)) -> AuthResponse:
    try:
        if await services.donors.get_by_email(payload.email):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
        document = payload.model_dump(exclude_none=True)
        document["password"] = hash_password(payload.password)
        stored = await services.donors.create(document)
    except DuplicateKeyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered") from exc
    except PyMongoError as exc:  # pragma: no cover - requires external service
        raise service_unavailable(
            "register_donor", exc, "Registration failed. Try again when database is available."
        ) from exc
    principal = principal_from_document(stored, "donor")
    token = create_access_token(principal.id, principal.role)
    return AuthResponse(access_token=token, user=principal, message="Registration successful")


async def create_account(users, payload: UserCreate | StaffCreate) -> Dict[str, Any]:
    """Insert a ``users`` account; raises 400 when the email is taken."""
    email = payload.email.lower()
    if await users.find_one({"email": email}):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")
    doc = {
        "email": email,
        "name": payload.name,
        "password": hash_password(payload.password),
        "role": payload.role,
        "phone": payload.phone,
        "hospital_name": getattr(payload, "hospital_name", None),
        "created_at": datetime.now(timezone.utc),
    }
    try:
        result = await users.insert_one(doc)
    except DuplicateKeyError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered") from exc
    stored = await users.find_one({"_id": result.inserted_id})
    stored["_id"] = str(stored["_id"])
    return stored


@router.post("/register", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def register_user(payload: UserCreate, services: Services = Depends(get_services)) -> UserPublic:
    try:
        stored = await create_account(services.users, payload)
    except PyMongoError as exc:  # pragma: no cover - requires external service
        raise service_unavailable(
            "register_user", exc, "Registration failed. Try again when database is available."
        ) from exc
    return UserPublic(**stored)


class LoginForm:
    def __init__(
        self,
        username: str = Form(...),
        password: str = Form(...),
        role: UserRole = Form(...),
    ) -> None:
        self.username = username
        self.password = password
        self.role = role


@router.post("/login", response_model=AuthResponse)
async def login_user(form_data: LoginForm = Depends(), services: Services = Depends(get_services)) -> AuthResponse:
    email = form_data.username.lower()
    try:
        if form_data.role == "donor":
            account = await services.donors.get_by_email(email)
        else:
            account = await services.users.find_one({"email": email})
    except PyMongoError as exc:  # pragma: no cover
        raise service_unavailable("login_user", exc, "Login unavailable. Try again shortly.") from exc
    if not account or not verify_password(form_data.password, account.get("password", "")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect email or password")
    if form_data.role != "donor" and account.get("role") != form_data.role:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Role mismatch for this account")
    principal = principal_from_document(account, form_data.role)
    token = create_access_token(principal.id, principal.role)
    return AuthResponse(access_token=token, user=principal, message="Welcome back")


async def _resolve(token: str, services: Services) -> Principal:
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    user_id, role = payload.sub, payload.role
    try:
        if role == "donor":
            account = await services.donors.get(user_id)
        else:
            account = await services.users.find_one({"_id": to_object_id(user_id)})
    except PyMongoError as exc:  # pragma: no cover
        raise service_unavailable("get_current_user", exc, "Authentication unavailable.") from exc
    if not account:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return principal_from_document(account, role)


async def get_current_user(
    token: Optional[str] = Security(oauth2_scheme),
    services: Services = Depends(get_services),
) -> Principal:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authorized to access this route")
    return await _resolve(token, services)


async def get_optional_user(
    token: Optional[str] = Security(oauth2_scheme),
    services: Services = Depends(get_services),
) -> Optional[Principal]:
    """Anonymous callers are allowed; a bad token is still rejected."""
    if not token:
        return None
    return await _resolve(token, services)


def require_roles(*roles: UserRole):
    def dependency(user: Principal = Depends(get_current_user)) -> Principal:
        if roles and user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions for this action",
            )
        return user

    return dependency
