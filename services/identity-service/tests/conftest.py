from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from identity_core.api import routes
from identity_core.config import Settings
from identity_core.domain.account import Account
from identity_core.domain.contracts import NewAccount
from identity_core.domain.service import AccountService
from identity_core.memory_repository import InMemoryCredentialStore
from identity_core.security.passwords import hash_password
from identity_core.security.token_codec import TokenCodec
from identity_core.security.token_providers import SignedTokenProvider
from identity_core.security.tokens import SessionIssuer

_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_-]+)")


class FrozenClock:
    """Clock returning a fixed instant until advanced explicitly."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


@dataclass
class SentMail:
    to_address: str
    subject: str
    body: str
    is_html: bool


class RecordingDispatcher:
    """Dispatcher fake that records messages and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[SentMail] = []
        self.refuse = False
        self.error: Exception | None = None
        self.delay_seconds = 0.0

    def send(self, to_address: str, subject: str, html_body: str, is_html: bool = True) -> bool:
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error
        if self.refuse:
            return False
        self.sent.append(SentMail(to_address, subject, html_body, is_html))
        return True

    @property
    def last(self) -> SentMail:
        return self.sent[-1]


def extract_token(body: str) -> str:
    match = _TOKEN_RE.search(body)
    assert match, f"no token link in {body!r}"
    return match.group(1)


@pytest.fixture
def settings() -> Settings:
    return replace(
        Settings(),
        jwt_secret="test-signing-secret-that-is-long-enough-for-hs256",
        jwt_issuer="identity.test",
        client_url="http://client.test",
        confirm_email_path="account/confirm-email",
        reset_password_path="account/reset-password",
        email_application_name="Identity Test",
        bootstrap_admin_username="admin@example.com",
        dispatch_timeout_seconds=2.0,
        bcrypt_rounds=4,
    )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def provider(settings, clock) -> SignedTokenProvider:
    return SignedTokenProvider(settings, clock=clock)


@pytest.fixture
def codec(provider) -> TokenCodec:
    return TokenCodec(provider)


@pytest.fixture
def sessions(settings) -> SessionIssuer:
    return SessionIssuer(settings)


@pytest.fixture
def service(store, codec, sessions, dispatcher, settings, clock) -> AccountService:
    return AccountService(
        store=store,
        codec=codec,
        sessions=sessions,
        dispatcher=dispatcher,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def make_account(store, clock):
    """Factory persisting an account directly in the store."""

    def _make(
        email: str = "member@example.com",
        password: str = "secret1",
        *,
        confirmed: bool = True,
        roles: tuple[str, ...] = ("Member",),
    ) -> Account:
        account = store.create_account(
            NewAccount(
                username=email.lower(),
                email=email.lower(),
                first_name="Member",
                last_name="User",
                password_hash=hash_password(password, rounds=4),
                created_at=clock(),
                email_confirmed=confirmed,
                claims={"email": email.lower(), "surname": "User"},
            )
        )
        for role in roles:
            store.assign_role(account.account_id, role)
        return store.find_by_id(account.account_id)

    return _make


@pytest.fixture
def api_client(service, sessions):
    """Provide a FastAPI test client with isolated state."""
    app = FastAPI()
    app.include_router(routes.router)
    app.state.account_service = service
    app.state.session_issuer = sessions

    with TestClient(app) as client:
        yield client


@pytest.fixture
def last_mailed_token(dispatcher):
    """Return the token embedded in the most recently dispatched link."""

    def _read() -> str:
        return extract_token(dispatcher.last.body)

    return _read
