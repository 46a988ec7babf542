"""Conditional SQL statements compiled for PostgreSQL."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from mining_rewards.db.models import SessionState, User
from mining_rewards.mining.stores import build_increment_statement, build_transition_statement
from mining_rewards.referrals.pagination import apply_cursor, encode_cursor


def _sql(stmt) -> str:
    return str(stmt.compile(dialect=postgresql.dialect()))


class TestTransitionStatement:
    def test_conditional_on_expected_state(self):
        stmt = build_transition_statement(
            "s1", SessionState.PENDING, SessionState.ACTIVE,
            {"end_at": datetime(2026, 3, 11, tzinfo=timezone.utc)},
        )
        sql = _sql(stmt)
        assert sql.startswith("UPDATE mining_sessions SET")
        assert "mining_sessions.state = " in sql
        assert "mining_sessions.end_at IS NULL" in sql
        assert "RETURNING" in sql

    def test_completion_guards_distribution_timestamp(self):
        stmt = build_transition_statement(
            "s1", SessionState.ACTIVE, SessionState.COMPLETED,
            {"reward_distributed_at": datetime(2026, 3, 11, tzinfo=timezone.utc)},
        )
        sql = _sql(stmt)
        assert "mining_sessions.reward_distributed_at IS NULL" in sql
        assert "mining_sessions.end_at IS NULL" not in sql

    @pytest.mark.parametrize(
        ("expected", "new"),
        [
            (SessionState.ACTIVE, SessionState.PENDING),
            (SessionState.COMPLETED, SessionState.ACTIVE),
            (SessionState.ACTIVE, SessionState.ACTIVE),
        ],
    )
    def test_backwards_transition_rejected(self, expected, new):
        with pytest.raises(ValueError):
            build_transition_statement("s1", expected, new, {})

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            build_transition_statement("s1", SessionState.PENDING, SessionState.ACTIVE, {"user_id": "x"})


class TestIncrementStatement:
    def test_balance_increment_is_relative(self):
        sql = _sql(build_increment_statement("u1", "balance", Decimal("24.000")))
        assert "users.balance + " in sql
        assert "RETURNING users.balance" in sql

    def test_other_fields_rejected(self):
        with pytest.raises(ValueError):
            build_increment_statement("u1", "referral_code", Decimal("1"))


class TestReferralPageQuery:
    def test_cursor_becomes_keyset_condition(self):
        query = apply_cursor(select(User.id).order_by(User.id), User.id, encode_cursor("u42"))
        assert "users.id > " in _sql(query)

    def test_no_cursor_leaves_query_alone(self):
        query = select(User.id)
        assert apply_cursor(query, User.id, None) is query
