"""Account service orchestrating registration, confirmation, recovery and login."""

from __future__ import annotations

import html
import logging
from datetime import datetime
from typing import Callable
from urllib.parse import urlencode

from ..config import Settings
from ..notifications.dispatch import send_with_timeout
from ..security.passwords import hash_password
from ..security.token_codec import TokenCodec
from ..security.tokens import SessionIssuer, utc_now
from .account import Account
from .authenticator import Authenticator
from .contracts import EmailMessage, NewAccount, RegisterAccountInput, TokenPurpose
from .outcomes import AuthOutcome, FlowResult, LoginResult, Rejection
from .ports import CredentialStore, EmailTakenError, NotificationDispatcher

logger = logging.getLogger(__name__)

NOT_REGISTERED = "This email address has not been registered yet"
DELIVERY_FAILED = "Failed to send email. Please contact admin"
CONFIRM_FIRST = "Please confirm your email address first"


class AccountService:
    """Credential lifecycle workflows backed by a credential store."""

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        sessions: SessionIssuer,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Store dependencies used to orchestrate persistence, tokens and mail."""
        self._store = store
        self._codec = codec
        self._sessions = sessions
        self._dispatcher = dispatcher
        self._settings = settings
        self._clock = clock
        self._authenticator = Authenticator(store, settings, clock=clock)

    def login(self, username: str, password: str) -> LoginResult:
        """Authenticate and, on success, mint a session token."""
        outcome = self._authenticator.authenticate(username, password)
        if not outcome.succeeded:
            return LoginResult(outcome)
        return LoginResult(outcome, self._sessions.issue(outcome.account))

    def refresh_session(self, account_id: str) -> LoginResult | None:
        """Issue a new session for an account that can still sign in.

        The returned outcome carries the same account snapshot the token was
        minted from. Returns ``None`` if the account vanished, lost its
        confirmation or is locked out.
        """
        account = self._store.find_by_id(account_id)
        if account is None or not account.email_confirmed or account.is_locked_out(self._clock()):
            return None
        return LoginResult(AuthOutcome.success(account), self._sessions.issue(account))

    def register(self, payload: RegisterAccountInput) -> FlowResult:
        """Create an unconfirmed account and mail its confirmation link.

        A failed delivery does not undo the account; the caller can use
        :meth:`resend_confirmation` to try again.
        """
        email = payload.email.strip().lower()
        if self._store.email_exists(email):
            return self._email_taken(email)

        first_name = payload.first_name.strip()
        last_name = payload.last_name.strip()
        try:
            account = self._store.create_account(
                NewAccount(
                    username=email,
                    email=email,
                    first_name=first_name,
                    last_name=last_name,
                    password_hash=hash_password(payload.password, rounds=self._settings.bcrypt_rounds),
                    created_at=self._clock(),
                    claims={"email": email, "surname": last_name},
                )
            )
        except EmailTakenError:
            logger.info("concurrent registration for %s lost the insert", email)
            return self._email_taken(email)
        self._store.assign_role(account.account_id, self._settings.default_role)
        account.roles = (*account.roles, self._settings.default_role)
        logger.info("registered account %s", account.account_id)

        if not self._send_confirmation(account):
            return FlowResult.rejected(Rejection.DELIVERY_FAILED, DELIVERY_FAILED, account)
        return FlowResult.accepted(
            "Your account has been created, please confirm your email address", account
        )

    def confirm_email(self, email: str, token: str) -> FlowResult:
        account = self._store.find_by_email(email.strip().lower())
        if account is None:
            return FlowResult.rejected(Rejection.NOT_FOUND, NOT_REGISTERED)
        if account.email_confirmed:
            return FlowResult.rejected(
                Rejection.ALREADY_CONFIRMED,
                "Your email was confirmed before. Please login to your account",
                account,
            )

        check = self._codec.validate(TokenPurpose.EMAIL_CONFIRMATION, account, token)
        if not check.ok:
            return check

        self._store.set_email_confirmed(account.account_id)
        account.email_confirmed = True
        logger.info("confirmed email for account %s", account.account_id)
        return FlowResult.accepted("Your email address is confirmed. You can login now", account)

    def resend_confirmation(self, email: str) -> FlowResult:
        account = self._store.find_by_email(email.strip().lower())
        if account is None:
            return FlowResult.rejected(Rejection.NOT_FOUND, NOT_REGISTERED)
        if account.email_confirmed:
            return FlowResult.rejected(
                Rejection.ALREADY_CONFIRMED,
                "Your email address was confirmed before. Please login to your account",
                account,
            )

        if not self._send_confirmation(account):
            return FlowResult.rejected(Rejection.DELIVERY_FAILED, DELIVERY_FAILED, account)
        return FlowResult.accepted("Please check your email to confirm your email address", account)

    def forgot_username_or_password(self, email: str) -> FlowResult:
        account = self._store.find_by_email(email.strip().lower())
        if account is None:
            return FlowResult.rejected(Rejection.NOT_FOUND, NOT_REGISTERED)
        if not account.email_confirmed:
            return FlowResult.rejected(Rejection.EMAIL_NOT_CONFIRMED, CONFIRM_FIRST, account)

        token = self._codec.generate(TokenPurpose.PASSWORD_RESET, account)
        link = self._build_link(self._settings.reset_password_path, token, account.email)
        body = (
            f"<p>Hello: {html.escape(account.full_name)}</p>"
            f"<p>Username: {html.escape(account.username)}.</p>"
            "<p>In order to reset your password, please click on the following link.</p>"
            f'<p><a href="{html.escape(link)}">Click here</a></p>'
            "<p>Thank you,</p>"
            f"<br>{self._settings.email_application_name}"
        )
        if not self._dispatch(EmailMessage(account.email, "Forgot username or password", body)):
            return FlowResult.rejected(Rejection.DELIVERY_FAILED, DELIVERY_FAILED, account)
        return FlowResult.accepted("Please check your email", account)

    def reset_password(self, email: str, token: str, new_password: str) -> FlowResult:
        account = self._store.find_by_email(email.strip().lower())
        if account is None:
            return FlowResult.rejected(Rejection.NOT_FOUND, NOT_REGISTERED)
        if not account.email_confirmed:
            return FlowResult.rejected(Rejection.EMAIL_NOT_CONFIRMED, CONFIRM_FIRST, account)

        check = self._codec.validate(TokenPurpose.PASSWORD_RESET, account, token)
        if not check.ok:
            return check

        password_hash = hash_password(new_password, rounds=self._settings.bcrypt_rounds)
        self._store.set_password_hash(account.account_id, password_hash)
        account.password_hash = password_hash
        logger.info("password reset for account %s", account.account_id)
        return FlowResult.accepted("Your password has been reset", account)

    @staticmethod
    def _email_taken(email: str) -> FlowResult:
        return FlowResult.rejected(
            Rejection.EMAIL_TAKEN,
            f"An existing account is using {email}, email address. "
            "Please try with another email address",
        )

    def _send_confirmation(self, account: Account) -> bool:
        token = self._codec.generate(TokenPurpose.EMAIL_CONFIRMATION, account)
        link = self._build_link(self._settings.confirm_email_path, token, account.email)
        body = (
            f"<p>Hello: {html.escape(account.full_name)}</p>"
            "<p>Please confirm your email address by clicking on the following link.</p>"
            f'<p><a href="{html.escape(link)}">Click here</a></p>'
            "<p>Thank you,</p>"
            f"<br>{self._settings.email_application_name}"
        )
        return self._dispatch(EmailMessage(account.email, "Confirm your email", body))

    def _build_link(self, path: str, token: str, email: str) -> str:
        base = self._settings.client_url.rstrip("/")
        query = urlencode({"token": token, "email": email})
        return f"{base}/{path.lstrip('/')}?{query}"

    def _dispatch(self, message: EmailMessage) -> bool:
        return send_with_timeout(
            self._dispatcher, message, self._settings.dispatch_timeout_seconds
        )
