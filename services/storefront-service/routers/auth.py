"""Authentication API router."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from auth import Principal, get_current_principal, hash_password, issue_token, verify_password
from database import get_db
from dependencies import get_account_service
from errors import BusinessRuleError
from models import NewsletterSubscriber, User
from monitoring import auth_attempts_counter, auth_failures_counter
from schemas import (
    ForgotPasswordRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
    VerifyEmailRequest,
)
from services.account_service import AccountService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    """Create a customer account, mail a verification link and return its bearer token."""
    email = request.email.lower()
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise BusinessRuleError("Email already registered")

    user = User(
        name=request.name,
        email=email,
        password_hash=hash_password(request.password),
        role="customer",
        phone=request.phone,
        newsletter=request.newsletter,
        api_token=issue_token(),
    )
    db.add(user)
    if request.newsletter and db.query(NewsletterSubscriber.id).filter(NewsletterSubscriber.email == email).first() is None:
        db.add(NewsletterSubscriber(email=email))
    db.commit()
    db.refresh(user)

    logger.info("User registered", extra={"user_id": user.id})
    await account_service.send_verification(db, user)
    db.refresh(user)
    return {"success": True, "token": user.api_token, "user": UserResponse.model_validate(user)}


@router.post("/login")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    """Authenticate with email and password and return a fresh token."""
    auth_attempts_counter.add(1, {"type": "login"})

    user = db.query(User).filter(User.email == request.email.lower()).first()
    if user is None or not user.is_active or not verify_password(request.password, user.password_hash):
        auth_failures_counter.add(1, {"reason": "invalid_credentials"})
        logger.warning("Login failed: Invalid credentials")
        raise HTTPException(status_code=401, detail="Invalid email or password")

    user.api_token = issue_token()
    db.commit()

    logger.info("User logged in successfully", extra={"user_id": user.id, "role": user.role})
    return {"success": True, "token": user.api_token, "token_type": "bearer", "user": UserResponse.model_validate(user)}


@router.get("/me")
async def me(principal: Principal = Depends(get_current_principal), db: Session = Depends(get_db)):
    user = db.get(User, principal.id)
    return {"success": True, "user": UserResponse.model_validate(user)}


@router.post("/forgot-password")
async def forgot_password(
    request: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    await account_service.request_password_reset(db, request.email)
    return {
        "success": True,
        "message": "If an account exists with this email, you will receive a password reset link."
    }


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    account_service.reset_password(db, request.token, request.password)
    return {"success": True, "message": "Password reset successfully. You can now log in with your new password."}


def _verify(db: Session, account_service: AccountService, token: str):
    if account_service.verify_email(db, token):
        return {"success": True, "message": "Email verified successfully"}
    return {"success": True, "message": "Email already verified"}


@router.get("/verify-email")
async def verify_email_link(
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    """Verify an address from the link mailed at registration."""
    return _verify(db, account_service, token)


@router.post("/verify-email")
async def verify_email(
    request: VerifyEmailRequest,
    db: Session = Depends(get_db),
    account_service: AccountService = Depends(get_account_service)
):
    return _verify(db, account_service, request.token)
