"""Session completion: idempotent transition, reward calculation, balance credit.

Triggered by the deferred completion job, which may arrive more than once,
concurrently, early or late. The only guard against double payment is the
conditional ACTIVE -> COMPLETED transition in step 1: whichever delivery
wins it computes and credits the reward; every other delivery sees the
condition fail and returns without touching the balance.

Steps 1 and 3 write different rows and are deliberately not combined. If
the credit in step 3 fails the session stays COMPLETED, the failure is
reported for reconciliation and nothing is retried.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from mining_rewards.db.models import SessionState
from mining_rewards.errors import UserNotFoundError
from mining_rewards.mining.reconciliation import ReconciliationSink, UncreditedReward
from mining_rewards.mining.records import SessionRecord
from mining_rewards.mining.reward import DEFAULT_REFERRAL_CAP, RewardBreakdown, calculate_reward
from mining_rewards.mining.schemas import CompletionPayload
from mining_rewards.mining.stores import PopulationCounter, SessionStore, UserStore
from mining_rewards.mining.streak import StreakEvaluator
from mining_rewards.referrals.resolver import ReferralGraphResolver

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CompletionResult:
    session_id: str
    user_id: str
    # completed | already_processed | not_active | not_found | commit_failed
    status: str
    reward: Decimal | None = None
    balance: Decimal | None = None
    breakdown: RewardBreakdown | None = None

    @property
    def ok(self) -> bool:
        return self.status in ("completed", "already_processed")


class CompletionHandler:
    def __init__(
        self,
        sessions: SessionStore,
        users: UserStore,
        population: PopulationCounter,
        resolver: ReferralGraphResolver,
        streaks: StreakEvaluator,
        reconciliation: ReconciliationSink,
        referral_cap: int = DEFAULT_REFERRAL_CAP,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sessions = sessions
        self._users = users
        self._population = population
        self._resolver = resolver
        self._streaks = streaks
        self._reconciliation = reconciliation
        self._referral_cap = referral_cap
        self._clock = clock

    async def complete(self, payload: CompletionPayload) -> CompletionResult:
        """Complete a session and credit its reward, at most once.

        Store errors raised by the transition itself propagate; the caller
        may retry the whole call since the transition is idempotent.
        """
        logger.info("Completing session %s for user %s", payload.session_id, payload.user_id)

        # 1. ACTIVE -> COMPLETED, only once
        session = await self._sessions.conditional_update(
            payload.session_id,
            SessionState.ACTIVE,
            SessionState.COMPLETED,
            {"reward_distributed_at": self._clock()},
        )
        if session is None:
            return await self._transition_refused(payload)

        user_id = session.user_id
        if user_id != payload.user_id:
            logger.warning(
                "Trigger user %s does not match session %s owner %s; crediting owner",
                payload.user_id, session.id, user_id,
            )

        # 2. Reward from data read after the transition
        breakdown = await self.calculate(session)

        # 3. Atomic credit
        try:
            balance = await self._users.conditional_increment(user_id, "balance", breakdown.reward)
        except UserNotFoundError as e:
            await self._report_uncredited(session, breakdown.reward, e)
            return CompletionResult(session.id, user_id, "not_found", reward=breakdown.reward, breakdown=breakdown)
        except Exception as e:
            await self._report_uncredited(session, breakdown.reward, e)
            return CompletionResult(session.id, user_id, "commit_failed", reward=breakdown.reward, breakdown=breakdown)

        logger.info(
            "Reward distributed: session=%s user=%s reward=%s balance=%s",
            session.id, user_id, breakdown.reward, balance,
        )
        return CompletionResult(
            session.id, user_id, "completed",
            reward=breakdown.reward, balance=balance, breakdown=breakdown,
        )

    async def calculate(self, session: SessionRecord) -> RewardBreakdown:
        """Compute the reward for a session.

        Referral and streak lookups degrade to "no bonus" on failure; a
        population read failure counts as an empty population.
        """
        end = session.end_at or self._clock()

        try:
            population = await self._population.get()
        except Exception:
            logger.exception("Failed to read population count; using 0")
            population = 0

        active_referrals = 0
        try:
            user = await self._users.get(session.user_id)
            code = user.referral_code if user is not None else None
            activity = await self._resolver.resolve(code, session.start_at, end)
            active_referrals = len(activity.active_user_ids)
        except Exception:
            logger.exception("Error determining social bonus for session %s", session.id)

        try:
            has_streak = await self._streaks.has_streak(session.user_id, end)
        except Exception:
            logger.exception("Failed to check streak for user %s", session.user_id)
            has_streak = False

        breakdown = calculate_reward(population, active_referrals, has_streak, self._referral_cap)
        logger.info(
            "Reward components: session=%s user=%s population=%d base=%s "
            "active_referrals=%d social=%s streak=%s streak_multiplier=%s reward=%s",
            session.id, session.user_id, breakdown.population, breakdown.base,
            breakdown.active_referrals, breakdown.social, breakdown.has_streak,
            breakdown.streak, breakdown.reward,
        )
        return breakdown

    async def _transition_refused(self, payload: CompletionPayload) -> CompletionResult:
        existing = await self._sessions.get(payload.session_id)
        if existing is None:
            logger.warning("Session %s not found; nothing to complete", payload.session_id)
            return CompletionResult(payload.session_id, payload.user_id, "not_found")
        if existing.state == SessionState.COMPLETED:
            logger.info(
                "Session %s already processed (user %s); duplicate delivery ignored",
                payload.session_id, payload.user_id,
            )
            return CompletionResult(payload.session_id, existing.user_id, "already_processed")
        logger.warning(
            "Session %s is %s, not ACTIVE; completion skipped",
            payload.session_id, existing.state.value,
        )
        return CompletionResult(payload.session_id, existing.user_id, "not_active")

    async def _report_uncredited(self, session: SessionRecord, reward: Decimal, error: Exception) -> None:
        logger.error(
            "Failed to credit reward %s for session %s (user %s); session stays COMPLETED",
            reward, session.id, session.user_id, exc_info=error,
        )
        entry = UncreditedReward(
            session_id=session.id,
            user_id=session.user_id,
            reward=reward,
            error=str(error),
            detected_at=self._clock(),
        )
        try:
            await self._reconciliation.report(entry)
        except Exception:
            logger.exception("Failed to report uncredited reward for session %s", session.id)
