"""Password reset and email verification through single-use mailed tokens."""
import hashlib
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from auth import hash_password, issue_token
from config import EMAIL_VERIFICATION_TOKEN_HOURS, PASSWORD_RESET_TOKEN_HOURS
from errors import BusinessRuleError, PermissionDeniedError
from models import AccountToken, TokenPurpose, User
from monitoring import auth_attempts_counter, auth_failures_counter
from services.email_service import AccountNotifier

logger = logging.getLogger(__name__)


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class AccountService:
    """Service for account recovery and email ownership checks."""

    def __init__(
        self,
        notifier: AccountNotifier,
        reset_hours: int = PASSWORD_RESET_TOKEN_HOURS,
        verification_hours: int = EMAIL_VERIFICATION_TOKEN_HOURS
    ):
        self.notifier = notifier
        self.reset_ttl = timedelta(hours=reset_hours)
        self.verification_ttl = timedelta(hours=verification_hours)

    def _issue(self, db: Session, user: User, purpose: str, ttl: timedelta) -> str:
        """
        Store a new token for the user, retiring any unused one with the same purpose.

        Returns:
            The raw token; only its digest is persisted
        """
        now = datetime.utcnow()
        db.query(AccountToken).filter(
            AccountToken.user_id == user.id,
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None)
        ).update({AccountToken.used_at: now}, synchronize_session=False)

        token = issue_token()
        db.add(AccountToken(
            user_id=user.id,
            purpose=purpose,
            token_hash=token_digest(token),
            expires_at=now + ttl,
        ))
        db.commit()
        return token

    @staticmethod
    def _consume(db: Session, record: AccountToken, now: datetime) -> bool:
        """Mark the token used unless another request already did."""
        claimed = db.query(AccountToken).filter(
            AccountToken.id == record.id,
            AccountToken.used_at.is_(None)
        ).update({AccountToken.used_at: now}, synchronize_session=False)
        return claimed == 1

    @staticmethod
    def _lookup(db: Session, token: str, purpose: str) -> Optional[AccountToken]:
        return db.query(AccountToken).filter(
            AccountToken.token_hash == token_digest(token),
            AccountToken.purpose == purpose
        ).first()

    async def request_password_reset(self, db: Session, email: str) -> None:
        """
        Mail a reset link when an active account uses this address.

        Unknown and inactive addresses are ignored; the caller sees the same
        outcome either way.
        """
        auth_attempts_counter.add(1, {"type": "password_reset_request"})
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return

        token = self._issue(db, user, TokenPurpose.PASSWORD_RESET, self.reset_ttl)
        logger.info("Password reset token issued", extra={"user_id": user.id})
        await self.notifier.password_reset(user, token)

    def reset_password(self, db: Session, token: str, password: str) -> User:
        """
        Set a new password using a reset token.

        The token is consumed and the user's bearer token rotated, which signs
        out every existing session.

        Raises:
            BusinessRuleError: If the token is unknown, used or expired
            PermissionDeniedError: If the account is deactivated
        """
        auth_attempts_counter.add(1, {"type": "password_reset"})
        record = self._lookup(db, token, TokenPurpose.PASSWORD_RESET)
        now = datetime.utcnow()
        if record is None or record.used_at is not None or record.expires_at <= now:
            auth_failures_counter.add(1, {"reason": "invalid_reset_token"})
            logger.warning("Password reset failed: Invalid or expired token")
            raise BusinessRuleError("Invalid or expired reset token")

        user = record.user
        if not user.is_active:
            raise PermissionDeniedError("Account is deactivated")
        if not self._consume(db, record, now):
            db.rollback()
            raise BusinessRuleError("Invalid or expired reset token")

        user.password_hash = hash_password(password)
        user.api_token = issue_token()
        db.commit()
        db.refresh(user)

        logger.info("Password reset", extra={"user_id": user.id})
        return user

    async def send_verification(self, db: Session, user: User) -> None:
        token = self._issue(db, user, TokenPurpose.EMAIL_VERIFICATION, self.verification_ttl)
        await self.notifier.email_verification(user, token)

    def verify_email(self, db: Session, token: str) -> bool:
        """
        Mark the token owner's address as verified.

        Returns:
            False when the address was already verified, True otherwise

        Raises:
            BusinessRuleError: If the token is unknown, expired, or used by an unverified account
        """
        record = self._lookup(db, token, TokenPurpose.EMAIL_VERIFICATION)
        if record is not None and record.user.email_verified:
            return False

        now = datetime.utcnow()
        if record is None or record.used_at is not None or record.expires_at <= now:
            auth_failures_counter.add(1, {"reason": "invalid_verification_token"})
            logger.warning("Email verification failed: Invalid or expired token")
            raise BusinessRuleError("Invalid or expired verification token")

        if not self._consume(db, record, now):
            db.rollback()
            raise BusinessRuleError("Invalid or expired verification token")
        record.user.email_verified = True
        db.commit()

        logger.info("Email verified", extra={"user_id": record.user_id})
        return True
