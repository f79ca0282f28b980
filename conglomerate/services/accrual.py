# conglomerate/services/accrual.py
"""
Interest accrual engine.

Interest accrues per whole minute at ``rate_monthly`` prorated over a
30-day month (43,200 minutes). ``last_accrued_at`` only ever moves forward by
whole minutes, so the partial minute left over at the end of a tick is
picked up by the next one. Rounding to the money scale is half-even and the
sub-scale remainder is carried on the row in ``accrual_remainder``.

A tick is safe to run while a previous one is still going: a non-blocking
process lock (plus ``pg_try_advisory_lock`` on PostgreSQL) lets only one
tick through, rows already locked by a withdrawal are skipped with
``SKIP LOCKED``, and every row update is version-checked.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from conglomerate.core.config import settings
from conglomerate.core.database import SessionLocal
from conglomerate.core.money import ZERO, money_str, prorate, quantize, utcnow
from conglomerate.models.investment import Investment, InvestmentStatus

logger = logging.getLogger(__name__)

PERIOD = timedelta(minutes=1)
PERIODS_PER_MONTH = 30 * 24 * 60

ADVISORY_LOCK_KEY = 0x61636372

_tick_lock = threading.Lock()


@dataclass
class AccrualResult:
    processed_count: int = 0
    total_accrued: Decimal = ZERO
    skipped_count: int = 0
    failed_count: int = 0


def whole_periods(last_accrued_at: datetime, now: datetime) -> int:
    elapsed = now - last_accrued_at
    if elapsed < PERIOD:
        return 0
    return elapsed // PERIOD


def accrue_investment(investment: Investment, now: datetime) -> Optional[Decimal]:
    """Credit interest owed up to ``now`` in place.

    Returns the amount credited, or None when not a single whole minute has
    passed (or the investment is closed) and nothing changed.
    """
    if investment.is_closed:
        return None
    periods = whole_periods(investment.last_accrued_at, now)
    if periods == 0:
        return None

    exact = prorate(investment.principal, investment.rate_monthly, periods, PERIODS_PER_MONTH)
    exact += investment.accrual_remainder or ZERO
    credited, remainder = quantize(exact)
    if credited < ZERO:
        # accrued_interest only goes down through withdrawals
        credited, remainder = ZERO, exact

    investment.accrued_interest = investment.accrued_interest + credited
    investment.accrual_remainder = remainder
    investment.last_accrued_at = investment.last_accrued_at + PERIOD * periods
    return credited


@contextmanager
def advisory_lock(bind):
    """Cross-process tick guard; always granted on databases without advisory locks."""
    if bind.dialect.name != "postgresql":
        yield True
        return
    with bind.connect() as conn:
        acquired = bool(conn.execute(
            text("SELECT pg_try_advisory_lock(:key)"), {"key": ADVISORY_LOCK_KEY}
        ).scalar())
        try:
            yield acquired
        finally:
            if acquired:
                conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": ADVISORY_LOCK_KEY})


class AccrualEngine:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        statuses: Optional[Iterable[str]] = None,
        retries: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.statuses = tuple(statuses or settings.ACCRUAL_STATUSES)
        if InvestmentStatus.CLOSED in self.statuses:
            raise ValueError("Closed investments never accrue")
        self.retries = retries or settings.MAX_CONFLICT_RETRIES

    def run_tick(self, now: Optional[datetime] = None) -> AccrualResult:
        now = now or utcnow()
        result = AccrualResult()

        if not _tick_lock.acquire(blocking=False):
            logger.info("Accrual tick skipped: previous tick still running")
            return result
        try:
            with self.session_factory() as db:
                bind = db.get_bind()
                investment_ids = db.execute(
                    select(Investment.id).where(Investment.status.in_(self.statuses))
                ).scalars().all()

            with advisory_lock(bind) as acquired:
                if not acquired:
                    logger.info("Accrual tick skipped: advisory lock held elsewhere")
                    return result
                for investment_id in investment_ids:
                    self._process(investment_id, now, result)
        finally:
            _tick_lock.release()

        if result.processed_count == 0:
            logger.info("Accrual tick: no investments due")
        else:
            logger.info(
                "Accrual tick: processed %d investments, total accrued %s",
                result.processed_count, money_str(result.total_accrued),
            )
        return result

    def _process(self, investment_id: str, now: datetime, result: AccrualResult) -> None:
        for attempt in range(1, self.retries + 1):
            try:
                credited = self._accrue_one(investment_id, now)
            except StaleDataError:
                logger.warning(
                    "Investment %s changed during accrual (attempt %d/%d)",
                    investment_id, attempt, self.retries,
                )
                continue
            except SQLAlchemyError:
                logger.exception("Accrual failed for investment %s", investment_id)
                result.failed_count += 1
                return
            if credited is None:
                result.skipped_count += 1
            else:
                result.processed_count += 1
                result.total_accrued += credited
            return
        logger.error("Investment %s abandoned for this tick after %d conflicts", investment_id, self.retries)
        result.failed_count += 1

    def _accrue_one(self, investment_id: str, now: datetime) -> Optional[Decimal]:
        with self.session_factory() as db:
            try:
                investment = db.execute(
                    select(Investment)
                    .where(Investment.id == investment_id)
                    .with_for_update(skip_locked=True)
                ).scalar_one_or_none()
                if investment is None or investment.status not in self.statuses:
                    return None
                credited = accrue_investment(investment, now)
                if credited is not None:
                    db.commit()
                return credited
            except Exception:
                db.rollback()
                raise


def catch_up(investment: Investment, now: Optional[datetime] = None) -> Optional[Decimal]:
    """Bring one row's accrual current inside the caller's transaction."""
    if investment.status not in settings.ACCRUAL_STATUSES:
        return None
    return accrue_investment(investment, now or utcnow())


default_engine = AccrualEngine()


def run_accrual_tick(now: Optional[datetime] = None, session_factory: Optional[sessionmaker] = None) -> AccrualResult:
    engine = default_engine if session_factory is None else AccrualEngine(session_factory)
    return engine.run_tick(now)
