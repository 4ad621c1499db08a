"""Database repository for identity/account data.

Expected tables::

    accounts(account_id, username, email, first_name, last_name, password_hash,
             email_confirmed, failed_login_count, lockout_until, created_at)
    account_roles(account_id, role)              -- unique (account_id, role)
    account_claims(account_id, claim_type, claim_value)

``accounts.email`` and ``accounts.username`` carry unique constraints.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from psycopg import errors, sql
from psycopg.rows import tuple_row
from psycopg_pool import ConnectionPool

from .domain.account import Account
from .domain.contracts import LoginFailureState, NewAccount
from .domain.ports import AccountNotFoundError, EmailTakenError

_ACCOUNT_COLUMNS = sql.SQL(", ").join(
    sql.Identifier(name)
    for name in (
        "account_id",
        "username",
        "email",
        "first_name",
        "last_name",
        "password_hash",
        "email_confirmed",
        "failed_login_count",
        "lockout_until",
        "created_at",
    )
)


class PostgresCredentialStore:
    """Postgres-backed account persistence."""

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def _find_one(self, column: str, value: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    sql.SQL("SELECT {} FROM accounts WHERE {} = %s").format(
                        _ACCOUNT_COLUMNS, sql.Identifier(column)
                    ),
                    (value,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                cur.execute(
                    "SELECT role FROM account_roles WHERE account_id = %s ORDER BY role",
                    (row[0],),
                )
                roles = tuple(r[0] for r in cur.fetchall())
                cur.execute(
                    "SELECT claim_type, claim_value FROM account_claims WHERE account_id = %s",
                    (row[0],),
                )
                claims = {r[0]: r[1] for r in cur.fetchall()}
        return self._map_record(row, roles, claims)

    def find_by_id(self, account_id: str) -> Account | None:
        return self._find_one("account_id", account_id)

    def find_by_username(self, username: str) -> Account | None:
        return self._find_one("username", username.lower())

    def find_by_email(self, email: str) -> Account | None:
        return self._find_one("email", email.lower())

    def email_exists(self, email: str) -> bool:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT 1 FROM accounts WHERE email = %s", (email.lower(),))
                return cur.fetchone() is not None

    def create_account(self, payload: NewAccount) -> Account:
        """Insert the account row and its claims in one transaction.

        Relies on the unique constraint on ``accounts.email``; a conflicting
        insert raises :class:`EmailTakenError`.
        """
        account_id = str(uuid.uuid4())
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                try:
                    cur.execute(
                        sql.SQL(
                            """
                            INSERT INTO accounts (
                                account_id, username, email, first_name, last_name, password_hash,
                                email_confirmed, failed_login_count, lockout_until, created_at
                            )
                            VALUES (%s, %s, %s, %s, %s, %s, %s, 0, NULL, %s)
                            RETURNING {}
                            """
                        ).format(_ACCOUNT_COLUMNS),
                        (
                            account_id,
                            payload.username,
                            payload.email,
                            payload.first_name,
                            payload.last_name,
                            payload.password_hash,
                            payload.email_confirmed,
                            payload.created_at,
                        ),
                    )
                except errors.UniqueViolation as exc:
                    conn.rollback()
                    raise EmailTakenError(payload.email) from exc
                row = cur.fetchone()
                for claim_type, claim_value in payload.claims.items():
                    cur.execute(
                        """
                        INSERT INTO account_claims (account_id, claim_type, claim_value)
                        VALUES (%s, %s, %s)
                        """,
                        (account_id, claim_type, claim_value),
                    )
                conn.commit()
        return self._map_record(row, (), dict(payload.claims))

    def _update(self, statement: str, params: tuple[Any, ...], account_id: str) -> None:
        """Run a single-row UPDATE, raising when no account matched."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(statement, params)
                if cur.rowcount == 0:
                    conn.rollback()
                    raise AccountNotFoundError(account_id)
                conn.commit()

    def assign_role(self, account_id: str, role: str) -> None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute("SELECT 1 FROM accounts WHERE account_id = %s", (account_id,))
                if cur.fetchone() is None:
                    raise AccountNotFoundError(account_id)
                cur.execute(
                    """
                    INSERT INTO account_roles (account_id, role)
                    VALUES (%s, %s)
                    ON CONFLICT (account_id, role) DO NOTHING
                    """,
                    (account_id, role),
                )
                conn.commit()

    def set_email_confirmed(self, account_id: str, confirmed: bool = True) -> None:
        self._update(
            "UPDATE accounts SET email_confirmed = %s WHERE account_id = %s",
            (confirmed, account_id),
            account_id,
        )

    def record_failed_login(
        self, account_id: str, *, threshold: int, lockout_until: datetime
    ) -> LoginFailureState:
        """Increment the counter and apply the lockout in a single row update.

        The row lock taken by UPDATE serialises concurrent attempts, so two
        failures can never both observe the same pre-increment count.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET failed_login_count = failed_login_count + 1,
                        lockout_until = CASE
                            WHEN failed_login_count + 1 > %s THEN %s
                            ELSE lockout_until
                        END
                    WHERE account_id = %s
                    RETURNING failed_login_count, lockout_until
                    """,
                    (threshold, lockout_until, account_id),
                )
                row = cur.fetchone()
                if row is None:
                    conn.rollback()
                    raise AccountNotFoundError(account_id)
                conn.commit()
        return LoginFailureState(failed_login_count=row[0], lockout_until=row[1])

    def reset_failed_login_count(self, account_id: str, *, now: datetime) -> LoginFailureState:
        """Clear the counter and lockout unless a lockout is active at ``now``.

        The condition is part of the UPDATE, so a lockout written by a
        concurrent failure is never erased by a late success.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET failed_login_count = 0, lockout_until = NULL
                    WHERE account_id = %s
                      AND (lockout_until IS NULL OR lockout_until <= %s)
                    RETURNING failed_login_count, lockout_until
                    """,
                    (account_id, now),
                )
                row = cur.fetchone()
                if row is None:
                    cur.execute(
                        "SELECT failed_login_count, lockout_until FROM accounts WHERE account_id = %s",
                        (account_id,),
                    )
                    row = cur.fetchone()
                    if row is None:
                        conn.rollback()
                        raise AccountNotFoundError(account_id)
                conn.commit()
        return LoginFailureState(failed_login_count=row[0], lockout_until=row[1])

    def set_lockout_until(self, account_id: str, until: datetime | None) -> None:
        self._update(
            "UPDATE accounts SET lockout_until = %s WHERE account_id = %s",
            (until, account_id),
            account_id,
        )

    def set_password_hash(self, account_id: str, password_hash: str) -> None:
        self._update(
            "UPDATE accounts SET password_hash = %s WHERE account_id = %s",
            (password_hash, account_id),
            account_id,
        )

    def _map_record(self, row: tuple, roles: tuple[str, ...], claims: dict[str, str]) -> Account:
        """Convert a raw database tuple into the domain ``Account`` dataclass."""
        return Account(
            account_id=str(row[0]),
            username=row[1],
            email=row[2],
            first_name=row[3],
            last_name=row[4],
            password_hash=row[5],
            email_confirmed=row[6],
            failed_login_count=row[7],
            lockout_until=row[8],
            created_at=row[9],
            roles=roles,
            claims=claims,
        )
