"""Shared fixtures: every test runs against its own SQLite ledger."""

import pytest
from sqlalchemy.pool import StaticPool

from referral_credits.logging_config import configure_logging

configure_logging(log_level="WARNING")

from referral_credits.accounts.models import Account  # noqa: E402
from referral_credits.storage.db import db  # noqa: E402


@pytest.fixture(autouse=True)
def database():
    """Point the global db at a fresh in-memory database."""
    db.configure("sqlite://", poolclass=StaticPool)
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def file_database(tmp_path):
    """File-backed database for tests that write from several threads.

    In-memory SQLite shares one connection across threads, which would
    hide the locking these tests exercise.
    """
    db.configure(f"sqlite:///{tmp_path / 'ledger.db'}")
    db.create_tables()
    yield db
    db.drop_tables()


@pytest.fixture
def make_account():
    """Factory inserting accounts directly, skipping password hashing."""
    counter = {"n": 0}

    def _make(name=None, referral_code=None, email=None, is_admin=False, credit_balance=0):
        counter["n"] += 1
        with db.session() as session:
            account = Account(
                email=email or f"user{counter['n']}@example.com",
                name=name,
                referral_code=referral_code,
                credit_balance=credit_balance,
                is_admin=is_admin,
            )
            session.add(account)
            session.flush()
        return account

    return _make

