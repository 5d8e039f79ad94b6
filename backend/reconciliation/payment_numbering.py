"""
PAYMENT NUMBER ALLOCATION

Payment numbers are unique per user and look like PAY<year><sequence>.

Allocation is a chain of strategies tried in order:
1. Sequence    - PAY2026 + 4-digit atomic counter value (5 attempts)
2. Timestamp   - PAY2026 + last 6 digits of epoch ms (1 attempt)
3. Fail        - PaymentCreationFailedError

Collisions are detected by the unique (user_id, payment_number) index on
insert, not by locking. Each collision waits a small random jitter before
the next attempt.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
import asyncio
import logging
import random

from reconciliation.errors import PaymentCreationFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAYMENT_NUMBER_PREFIX = "PAY"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def year_prefix(now: datetime) -> str:
    return f"{PAYMENT_NUMBER_PREFIX}{now.year}"


class NumberingStrategy(ABC):
    """One link in the allocation chain"""

    name = "strategy"
    attempts = 1

    @abstractmethod
    async def next_number(self, user_id: str) -> str:
        pass


class SequenceNumberingStrategy(NumberingStrategy):
    """
    Sequential numbers from a per-user, per-year counter document.

    Uses findOneAndUpdate with $inc so concurrent writers never receive the
    same counter value. A collision can still happen against numbers written
    by the timestamp fallback or imported data; the allocator retries.
    """

    name = "sequence"

    def __init__(self, db: AsyncIOMotorDatabase, attempts: int = 5, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.attempts = attempts
        self.clock = clock

    async def get_next_sequence(self, user_id: str, prefix: str) -> int:
        result = await self.db.payment_sequences.find_one_and_update(
            {"user_id": user_id, "prefix": prefix},
            {
                "$inc": {"current_sequence": 1},
                "$set": {"updated_at": datetime.utcnow()},
                "$setOnInsert": {"created_at": datetime.utcnow()},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return result["current_sequence"]

    async def next_number(self, user_id: str) -> str:
        prefix = year_prefix(self.clock())
        sequence = await self.get_next_sequence(user_id, prefix)
        return f"{prefix}{sequence:04d}"


class TimestampNumberingStrategy(NumberingStrategy):
    """Fallback: trades sequential ordering for forward progress."""

    name = "timestamp"

    def __init__(self, attempts: int = 1, clock: Callable[[], datetime] = utc_now):
        self.attempts = attempts
        self.clock = clock

    async def next_number(self, user_id: str) -> str:
        now = self.clock()
        epoch_ms = str(int(now.timestamp() * 1000))
        return f"{year_prefix(now)}{epoch_ms[-6:]}"


class PaymentNumberAllocator:
    """Runs the strategy chain until an insert succeeds."""

    def __init__(
        self,
        strategies: Sequence[NumberingStrategy],
        jitter_range=(0.05, 0.15),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.strategies: List[NumberingStrategy] = list(strategies)
        self.jitter_range = jitter_range
        self.sleep = sleep

    @classmethod
    def default(cls, db: AsyncIOMotorDatabase, clock: Callable[[], datetime] = utc_now, **kwargs) -> "PaymentNumberAllocator":
        return cls(
            [SequenceNumberingStrategy(db, clock=clock), TimestampNumberingStrategy(clock=clock)],
            **kwargs,
        )

    async def _jitter(self):
        await self.sleep(random.uniform(*self.jitter_range))

    async def insert_with_unique_number(
        self,
        user_id: str,
        insert: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Call `insert(payment_number)` with freshly generated numbers until it
        does not raise DuplicateKeyError.

        Raises:
            PaymentCreationFailedError: every strategy exhausted
        """
        last_number: Optional[str] = None

        for strategy in self.strategies:
            for attempt in range(1, strategy.attempts + 1):
                try:
                    payment_number = await strategy.next_number(user_id)
                except PyMongoError as e:
                    logger.error(f"[NUMBERING] {strategy.name} generation failed for user:{user_id}: {str(e)}")
                    break

                last_number = payment_number
                try:
                    result = await insert(payment_number)
                except DuplicateKeyError:
                    logger.warning(
                        f"[NUMBERING] Duplicate payment number {payment_number} "
                        f"({strategy.name} attempt {attempt}/{strategy.attempts})"
                    )
                    await self._jitter()
                    continue

                if strategy is not self.strategies[0]:
                    logger.warning(f"[NUMBERING] Payment created with {strategy.name} fallback number: {payment_number}")
                else:
                    logger.info(f"[NUMBERING] Allocated payment number: {payment_number}")
                return result

            logger.warning(f"[NUMBERING] Strategy '{strategy.name}' exhausted for user:{user_id}")

        raise PaymentCreationFailedError(
            "Failed to create payment: could not allocate a unique payment number. Please try again.",
            details={"last_payment_number": last_number},
        )


async def ensure_payment_indexes(db: AsyncIOMotorDatabase):
    """
    Create the uniqueness constraint the allocator relies on, plus the
    reporting indexes for payments and department splits.
    """
    await db.payments.create_index(
        [("user_id", 1), ("payment_number", 1)],
        unique=True,
        name="unique_user_payment_number",
    )
    await db.payments.create_index([("invoice_id", 1)], name="payment_invoice")
    await db.payments.create_index([("user_id", 1), ("payment_date", -1)], name="payment_user_date")

    await db.payment_sequences.create_index(
        [("user_id", 1), ("prefix", 1)],
        unique=True,
        name="unique_payment_sequence_key",
    )

    await db.payment_splits.create_index([("payment_id", 1)], name="split_payment")
    await db.payment_splits.create_index(
        [("user_id", 1), ("department_name", 1), ("payment_date", -1)],
        name="split_department_report",
    )

    logger.info("[NUMBERING] Payment indexes ensured")
