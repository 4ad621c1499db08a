"""HTTP route definitions for the account endpoints."""

from __future__ import annotations

import jwt
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from prometheus_client import Counter
from pydantic import BaseModel, EmailStr, Field

from ..domain.contracts import RegisterAccountInput
from ..domain.outcomes import AuthStatus, FlowResult, Rejection
from ..domain.service import AccountService
from ..security.tokens import SessionIssuer

router = APIRouter(prefix="/api/account")

LOGIN_ATTEMPTS = Counter(
    "identity_login_attempts_total", "Login attempts by authentication outcome.", ["outcome"]
)


class LoginRequest(BaseModel):
    """Credentials submitted to the login endpoint."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class RegisterRequest(BaseModel):
    """Payload accepted when a visitor signs up."""

    first_name: str = Field(..., min_length=3, max_length=15)
    last_name: str = Field(..., min_length=3, max_length=15)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=15)


class ConfirmEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    email: EmailStr
    new_password: str = Field(..., min_length=6, max_length=15)


class UserResponse(BaseModel):
    """Signed-in account summary returned with its session token."""

    first_name: str
    last_name: str
    jwt: str
    expires_in: int


class MessageResponse(BaseModel):
    title: str
    message: str


_REJECTION_STATUS: dict[Rejection, int] = {
    Rejection.NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    Rejection.EMAIL_TAKEN: status.HTTP_400_BAD_REQUEST,
    Rejection.ALREADY_CONFIRMED: status.HTTP_400_BAD_REQUEST,
    Rejection.EMAIL_NOT_CONFIRMED: status.HTTP_400_BAD_REQUEST,
    Rejection.INVALID_TOKEN: status.HTTP_400_BAD_REQUEST,
    Rejection.DELIVERY_FAILED: status.HTTP_400_BAD_REQUEST,
}


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_session_issuer(request: Request) -> SessionIssuer:
    issuer: SessionIssuer = request.app.state.session_issuer
    return issuer


def get_current_account_id(
    authorization: str | None = Header(default=None),
    issuer: SessionIssuer = Depends(get_session_issuer),
) -> str:
    """Return the subject of a valid bearer session token."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    try:
        claims = issuer.decode(authorization[7:].strip())
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token") from exc
    return str(claims["sub"])


def _raise_for_rejection(result: FlowResult) -> None:
    if result.ok:
        return
    raise HTTPException(status_code=_REJECTION_STATUS[result.rejection], detail=result.message)


@router.post("/login", response_model=UserResponse)
def login(payload: LoginRequest, service: AccountService = Depends(get_service)) -> UserResponse:
    """Authenticate and return a session token for the account."""
    result = service.login(payload.username, payload.password)
    outcome = result.outcome
    LOGIN_ATTEMPTS.labels(outcome=outcome.status.value).inc()
    if outcome.status is AuthStatus.EMAIL_NOT_CONFIRMED:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please confirm your email.")
    if outcome.status is AuthStatus.LOCKED_OUT:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=(
                "Your account has been locked. You should wait until "
                f"{outcome.locked_until.isoformat()} (UTC time) to be able to login"
            ),
        )
    if outcome.status is not AuthStatus.SUCCESS or result.session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid username or password")
    account = outcome.account
    return UserResponse(
        first_name=account.first_name,
        last_name=account.last_name,
        jwt=result.session.token,
        expires_in=result.session.expires_in,
    )


@router.get("/refresh-user-token", response_model=UserResponse)
def refresh_user_token(
    account_id: str = Depends(get_current_account_id),
    service: AccountService = Depends(get_service),
) -> UserResponse:
    """Exchange a still-valid session token for a fresh one."""
    result = service.refresh_session(account_id)
    if result is None or result.session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="account unavailable")
    account, session = result.outcome.account, result.session
    return UserResponse(
        first_name=account.first_name,
        last_name=account.last_name,
        jwt=session.token,
        expires_in=session.expires_in,
    )


@router.post("/register", response_model=MessageResponse)
def register(payload: RegisterRequest, service: AccountService = Depends(get_service)) -> MessageResponse:
    """Create an account and send its confirmation link."""
    result = service.register(
        RegisterAccountInput(
            first_name=payload.first_name,
            last_name=payload.last_name,
            email=payload.email,
            password=payload.password,
        )
    )
    _raise_for_rejection(result)
    return MessageResponse(title="Account Created", message=result.message)


@router.put("/confirm-email", response_model=MessageResponse)
def confirm_email(
    payload: ConfirmEmailRequest, service: AccountService = Depends(get_service)
) -> MessageResponse:
    result = service.confirm_email(payload.email, payload.token)
    _raise_for_rejection(result)
    return MessageResponse(title="Email confirmed", message=result.message)


@router.post("/resend-email-confirmation-link/{email}", response_model=MessageResponse)
def resend_email_confirmation_link(
    email: str, service: AccountService = Depends(get_service)
) -> MessageResponse:
    if not email.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email")
    result = service.resend_confirmation(email)
    _raise_for_rejection(result)
    return MessageResponse(title="Confirmation link sent", message=result.message)


@router.post("/forgot-username-or-password/{email}", response_model=MessageResponse)
def forgot_username_or_password(
    email: str, service: AccountService = Depends(get_service)
) -> MessageResponse:
    if not email.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email")
    result = service.forgot_username_or_password(email)
    _raise_for_rejection(result)
    return MessageResponse(title="Forgot username or password email sent", message=result.message)


@router.put("/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest, service: AccountService = Depends(get_service)
) -> MessageResponse:
    result = service.reset_password(payload.email, payload.token, payload.new_password)
    _raise_for_rejection(result)
    return MessageResponse(title="Password reset success", message=result.message)
