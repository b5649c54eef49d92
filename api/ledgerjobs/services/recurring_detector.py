"""
Recurring transaction detection. Pure functions over in-memory records.

Groups posted transactions by exact counterparty name, then classifies the
average gap between consecutive occurrences into a frequency bucket
(weekly, bi-weekly, monthly, quarterly, annually). Groups whose amounts vary
more than once are rejected even when their dates look periodic.
"""
import math
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from dateutil.relativedelta import relativedelta

MIN_OCCURRENCES = 3
MAX_DISTINCT_AMOUNTS = 2


# ─── Frequency buckets ────────────────────────────────────────────────────────

class Frequency(str, Enum):
    """Classifier output."""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"
    UNKNOWN = "UNKNOWN"


class StoredFrequency(str, Enum):
    """Values accepted by the recurring_transactions.frequency column."""
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"
    ANNUALLY = "ANNUALLY"
    IRREGULAR = "IRREGULAR"
    UNKNOWN = "UNKNOWN"


# Upper bound (inclusive) of the average interval, in days, for each bucket
INTERVAL_THRESHOLDS: list[tuple[int, Frequency]] = [
    (7, Frequency.WEEKLY),
    (14, Frequency.BIWEEKLY),
    (31, Frequency.MONTHLY),
    (92, Frequency.QUARTERLY),
]

# The storage enum has no quarterly value, so quarterly-spaced groups are
# persisted as IRREGULAR. Projection still uses the classifier bucket.
STORAGE_FREQUENCY: dict[Frequency, StoredFrequency] = {
    Frequency.WEEKLY: StoredFrequency.WEEKLY,
    Frequency.BIWEEKLY: StoredFrequency.BIWEEKLY,
    Frequency.MONTHLY: StoredFrequency.MONTHLY,
    Frequency.QUARTERLY: StoredFrequency.IRREGULAR,
    Frequency.ANNUALLY: StoredFrequency.ANNUALLY,
    Frequency.UNKNOWN: StoredFrequency.UNKNOWN,
}

_PROJECTION_OFFSETS: dict[Frequency, timedelta | relativedelta] = {
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.BIWEEKLY: timedelta(days=14),
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.ANNUALLY: relativedelta(years=1),
}


# ─── Records ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransactionRecord:
    id: uuid.UUID
    account_id: uuid.UUID
    date: datetime
    counterparty_name: str
    amount: Decimal             # signed; debits are negative
    status: str = "posted"


@dataclass
class PatternCandidate:
    merchant_name: str
    frequency: Frequency
    average_amount: Decimal     # mean of absolute amounts
    last_occurrence_date: datetime
    next_projected_date: datetime
    occurrence_count: int
    transaction_ids: list[uuid.UUID]

    @property
    def stored_frequency(self) -> StoredFrequency:
        return to_stored_frequency(self.frequency)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _coerce(frequency: Frequency | str) -> Frequency:
    if isinstance(frequency, Frequency):
        return frequency
    try:
        return Frequency(frequency.upper())
    except ValueError:
        return Frequency.UNKNOWN


def to_stored_frequency(frequency: Frequency | str) -> StoredFrequency:
    return STORAGE_FREQUENCY[_coerce(frequency)]


def _interval_days(earlier: datetime, later: datetime) -> int:
    """Whole days between two timestamps, rounded half up."""
    return math.floor((later - earlier).total_seconds() / 86400 + 0.5)


def classify_interval(avg_interval: float | None) -> Frequency:
    if avg_interval is None:
        return Frequency.UNKNOWN
    for upper, freq in INTERVAL_THRESHOLDS:
        if avg_interval <= upper:
            return freq
    return Frequency.ANNUALLY


def project_next(last: date | datetime, frequency: Frequency | str) -> date | datetime:
    """Next expected occurrence after ``last``. Unknown frequencies project one month ahead."""
    offset = _PROJECTION_OFFSETS.get(_coerce(frequency), relativedelta(months=1))
    return last + offset


# ─── Grouping & classification ───────────────────────────────────────────────

def group_by_merchant(
    transactions: list[TransactionRecord],
    min_occurrences: int = MIN_OCCURRENCES,
) -> dict[str, list[TransactionRecord]]:
    """Partition by exact counterparty name; drop groups too small to show recurrence."""
    groups: dict[str, list[TransactionRecord]] = defaultdict(list)
    for txn in transactions:
        groups[txn.counterparty_name].append(txn)
    return {name: txns for name, txns in groups.items() if len(txns) >= min_occurrences}


def classify_group(merchant: str, txns: list[TransactionRecord]) -> PatternCandidate | None:
    """
    Classify one candidate group.

    Returns None when the group holds more than MAX_DISTINCT_AMOUNTS distinct
    amounts: irregular amounts disqualify a group even if the dates line up.
    """
    ordered = sorted(txns, key=lambda t: t.date)
    if not ordered:
        return None

    if len({t.amount for t in ordered}) > MAX_DISTINCT_AMOUNTS:
        return None

    intervals = [_interval_days(ordered[i - 1].date, ordered[i].date) for i in range(1, len(ordered))]
    avg_interval = sum(intervals) / len(intervals) if intervals else None
    frequency = classify_interval(avg_interval)

    average = sum((abs(t.amount) for t in ordered), Decimal(0)) / len(ordered)
    last = ordered[-1].date

    return PatternCandidate(
        merchant_name=merchant,
        frequency=frequency,
        # quantized to the scale of recurring_transactions.amount (Numeric(14, 2))
        average_amount=average.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        last_occurrence_date=last,
        next_projected_date=project_next(last, frequency),
        occurrence_count=len(ordered),
        transaction_ids=[t.id for t in ordered],
    )


def detect_patterns(transactions: list[TransactionRecord]) -> list[PatternCandidate]:
    """One candidate per qualifying merchant group. Pending records are ignored."""
    posted = [t for t in transactions if t.status == "posted"]
    candidates: list[PatternCandidate] = []
    for merchant, txns in group_by_merchant(posted).items():
        candidate = classify_group(merchant, txns)
        if candidate is not None:
            candidates.append(candidate)
    return candidates
