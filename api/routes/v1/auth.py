"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create account; 201 with user + token pair
  POST /api/v1/auth/login     -- password login; 200 with user + token pair
  POST /api/v1/auth/refresh   -- rotate refresh token; 200 with a new pair
  POST /api/v1/auth/logout    -- revoke stored refresh token (requires auth)
  GET  /api/v1/auth/me        -- current user (requires auth)
  GET  /api/v1/auth/users     -- all users, newest first (admin only)

Security:
  [H2] POST /login is rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Handlers are plain `def`, not `async def`: scrypt and HMAC are CPU-bound, and
  FastAPI runs sync endpoints in its threadpool so they never block the event loop.
  Errors are raised by AuthSessionService as AuthError subclasses and rendered
  by the exception handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import AuthResponse, LoginRequest, MessageResponse, RefreshRequest, RegisterRequest, UserResponse
from auth.dependencies import get_auth_service, get_current_user, require_admin
from auth.models import AuthResult, PublicUser
from auth.service import AuthSessionService

# Auth policy:
# - POST /api/v1/auth/register: public -- admin role only while no users exist
# - POST /api/v1/auth/login:    public, rate-limited
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   requires auth (get_current_user)
# - GET  /api/v1/auth/me:       requires auth (get_current_user)
# - GET  /api/v1/auth/users:    requires admin (require_admin)
router = APIRouter()


def _token_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=AuthResponse.from_result(result).model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    body: RegisterRequest,
    service: AuthSessionService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account and return a token pair."""
    result = service.register(body.name, body.email, body.password, body.role)
    return _token_response(result, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(login_rate_limit)  # [H2] must sit BELOW @router so the registered endpoint is the limited one
def login(
    request: Request,
    body: LoginRequest,
    service: AuthSessionService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password both produce 401 bad_credentials.
    A locked account produces 423 account_locked with Retry-After.
    """
    return _token_response(service.login(body.email, body.password))


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(
    body: RefreshRequest,
    service: AuthSessionService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    return _token_response(service.refresh(body.refresh_token))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    current_user: PublicUser = Depends(get_current_user),
    service: AuthSessionService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke the caller's refresh token. The access token stays valid until it expires."""
    service.logout(current_user.id)
    return MessageResponse(message="Logged out successfully.")


@router.get("/auth/me", response_model=UserResponse)
def me(
    current_user: PublicUser = Depends(get_current_user),
    service: AuthSessionService = Depends(get_auth_service),
) -> UserResponse:
    """Return the authenticated user's public profile."""
    return UserResponse.from_user(service.get_me(current_user.id))


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    current_user: PublicUser = Depends(require_admin),
    service: AuthSessionService = Depends(get_auth_service),
) -> list[UserResponse]:
    """List all accounts, newest first. Admin only."""
    return [UserResponse.from_user(u) for u in service.list_users()]
