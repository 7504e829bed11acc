"""Authentication router.

 - JWT configuration sourced from environment variables (JWT_SECRET, JWT_ALGORITHM)
   and token lifetime from settings (ACCESS_TOKEN_EXPIRE_MINUTES)
 - Standardized error codes (AUTH_INVALID_CREDENTIALS, AUTH_TOKEN_EXPIRED, USER_EXISTS)
 - Login success/failure counters
 - ``get_auth_context`` turns a bearer token into the AuthContext every invoice
   workflow call receives
"""

from datetime import datetime, timedelta, UTC
import os
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
import jwt
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from invoice_desk.config.database import get_async_db_dependency
from invoice_desk.config.observability import (
    trace_operation,
    auth_login_counter,
    auth_login_failed_counter,
)
from invoice_desk.config.settings import get_settings
from invoice_desk.models.database import User
from invoice_desk.services.invoice_workflow import AuthContext
from invoice_desk.utils.api_shapes import success
from invoice_desk.utils.errors import ERROR_CODES, raise_http_error

SECRET_KEY = os.getenv("JWT_SECRET", "dev-insecure-secret-change")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

router = APIRouter()

security = HTTPBearer(auto_error=False)
# Lower rounds (e.g. BCRYPT_ROUNDS=4) keep test suites fast
_bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "12"))
pwd_context = CryptContext(
    schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=_bcrypt_rounds
)


class RegisterRequest(BaseModel):
    # Plain str; the User model validates the address format
    email: str
    password: str = Field(min_length=8)
    name: str = Field(min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=20)
    position: Optional[str] = Field(default=None, max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: str
    phone: Optional[str] = None
    position: Optional[str] = None
    is_active: bool
    created_at: Optional[datetime] = None


def _user_payload(user: User) -> dict:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        phone=user.phone,
        position=user.position,
        is_active=user.is_active,
        created_at=user.created_at,
    ).model_dump(mode="json")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta is None:
        expires_delta = timedelta(minutes=get_settings().ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": datetime.now(UTC) + expires_delta})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def authenticate_user(db: AsyncSession, email: str, password: str) -> Optional[User]:
    user = await get_user_by_email(db, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def _unauthorized(code: str, message: str) -> HTTPException:
    exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )
    setattr(exc, "code", code)
    return exc


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_async_db_dependency)
) -> User:
    """Get current authenticated user.

    - AUTH_TOKEN_EXPIRED when JWT is expired
    - AUTH_INVALID_CREDENTIALS for any other auth failure (missing header included)
    """
    if credentials is None:
        raise _unauthorized(ERROR_CODES["auth_invalid"], "Authentication required")
    try:
        payload = jwt.decode(
            credentials.credentials,
            SECRET_KEY,
            algorithms=[ALGORITHM]
        )
    except jwt.ExpiredSignatureError as exc:
        raise _unauthorized(ERROR_CODES["auth_expired"], "Token expired") from exc
    except jwt.PyJWTError as exc:
        raise _unauthorized(ERROR_CODES["auth_invalid"], "Invalid authentication token") from exc

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as exc:
        raise _unauthorized(ERROR_CODES["auth_invalid"], "Invalid authentication token") from exc

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise _unauthorized(ERROR_CODES["auth_invalid"], "Invalid credentials")
    return user


async def get_auth_context(current_user: User = Depends(get_current_user)) -> AuthContext:
    return AuthContext(user_id=current_user.id, email=current_user.email, name=current_user.name)


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_async_db_dependency)
):
    """Create a user account and return it with a fresh access token."""
    with trace_operation("auth_register"):
        if await get_user_by_email(db, request.email):
            raise_http_error(status.HTTP_409_CONFLICT, ERROR_CODES["user_exists"],
                             "A user with this email already exists")
        try:
            user = User(
                email=request.email.strip(),
                name=request.name.strip(),
                phone=request.phone,
                position=request.position,
                password_hash=get_password_hash(request.password),
                is_active=True,
            )
        except ValueError as exc:  # email format rejected by the model validator
            raise_http_error(status.HTTP_422_UNPROCESSABLE_ENTITY, ERROR_CODES["validation"],
                             str(exc), {"field": "email"})
        db.add(user)
        await db.commit()
        await db.refresh(user)
        token = create_access_token(data={"sub": str(user.id)})
        return success({
            "access_token": token,
            "token_type": "bearer",
            "expires_in": get_settings().ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "user": _user_payload(user),
        })


@router.post("/login")
async def login(
    login_request: LoginRequest,
    db: AsyncSession = Depends(get_async_db_dependency)
):
    """Authenticate user by email and return JWT token."""
    with trace_operation("auth_login"):
        user = await authenticate_user(db, login_request.email, login_request.password)
        if not user:
            auth_login_failed_counter.add(1, {"reason": "invalid_credentials"})
            raise _unauthorized(ERROR_CODES["auth_invalid"], "Invalid credentials")

        expires_minutes = get_settings().ACCESS_TOKEN_EXPIRE_MINUTES
        access_token = create_access_token(
            data={"sub": str(user.id)}, expires_delta=timedelta(minutes=expires_minutes)
        )

        user.last_login = datetime.now(UTC)
        await db.commit()
        auth_login_counter.add(1)

        return success({
            "access_token": access_token,
            "token_type": "bearer",
            "expires_in": expires_minutes * 60,
            "user": _user_payload(user),
        })


@router.get("/me")
async def get_current_user_profile(
    current_user: User = Depends(get_current_user)
):
    """Get current user profile."""
    with trace_operation("auth_get_profile"):
        return success(_user_payload(current_user))


@router.post("/logout")
async def logout():
    """Logout endpoint (client should remove token)."""
    with trace_operation("auth_logout"):
        # Stateless JWT: nothing to revoke server side
        return success({"message": "Successfully logged out"})
