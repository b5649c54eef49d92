"""
Unit tests for recurring_detector. Pure functions, no DB.

Run with:
    cd api && python -m pytest tests/services/test_recurring_detector.py -v
"""
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledgerjobs.services.recurring_detector import (
    Frequency,
    StoredFrequency,
    TransactionRecord,
    classify_group,
    classify_interval,
    detect_patterns,
    group_by_merchant,
    project_next,
    to_stored_frequency,
)

ACCOUNT = uuid.uuid4()
D1 = datetime(2024, 1, 15, 9, 30, tzinfo=timezone.utc)


def txn(name: str, amount: str, when: datetime, status: str = "posted") -> TransactionRecord:
    return TransactionRecord(
        id=uuid.uuid4(),
        account_id=ACCOUNT,
        date=when,
        counterparty_name=name,
        amount=Decimal(amount),
        status=status,
    )


def series(name: str, amounts: list[str], gaps: list[int], start: datetime = D1) -> list[TransactionRecord]:
    dates = [start]
    for gap in gaps:
        dates.append(dates[-1] + timedelta(days=gap))
    return [txn(name, amount, when) for amount, when in zip(amounts, dates)]


# ── classify_interval ────────────────────────────────────────────────────────

class TestClassifyInterval:
    @pytest.mark.parametrize("avg,expected", [
        (1, Frequency.WEEKLY),
        (7, Frequency.WEEKLY),
        (7.5, Frequency.BIWEEKLY),
        (14, Frequency.BIWEEKLY),
        (15, Frequency.MONTHLY),
        (31, Frequency.MONTHLY),
        (32, Frequency.QUARTERLY),
        (92, Frequency.QUARTERLY),
        (93, Frequency.ANNUALLY),
        (365, Frequency.ANNUALLY),
    ])
    def test_buckets(self, avg, expected):
        assert classify_interval(avg) == expected

    def test_no_interval_is_unknown(self):
        assert classify_interval(None) == Frequency.UNKNOWN


# ── project_next ─────────────────────────────────────────────────────────────

class TestProjectNext:
    def test_weekly_adds_seven_days(self):
        assert project_next(date(2024, 3, 1), Frequency.WEEKLY) == date(2024, 3, 8)

    def test_biweekly_adds_fourteen_days(self):
        assert project_next(date(2024, 3, 1), "BIWEEKLY") == date(2024, 3, 15)

    def test_monthly_is_calendar_month(self):
        assert project_next(date(2024, 2, 15), Frequency.MONTHLY) == date(2024, 3, 15)

    def test_monthly_from_month_end_clamps(self):
        assert project_next(date(2024, 1, 31), Frequency.MONTHLY) == date(2024, 2, 29)
        assert project_next(date(2023, 1, 31), Frequency.MONTHLY) == date(2023, 2, 28)

    def test_quarterly_adds_three_months(self):
        assert project_next(date(2024, 1, 10), Frequency.QUARTERLY) == date(2024, 4, 10)

    def test_annually_adds_a_year(self):
        assert project_next(date(2024, 2, 29), Frequency.ANNUALLY) == date(2025, 2, 28)

    def test_unknown_defaults_to_one_month(self):
        assert project_next(date(2024, 5, 20), Frequency.UNKNOWN) == date(2024, 6, 20)

    def test_unrecognized_string_defaults_to_one_month(self):
        assert project_next(date(2024, 5, 20), "fortnightly-ish") == date(2024, 6, 20)

    def test_lowercase_string_accepted(self):
        assert project_next(date(2024, 5, 20), "weekly") == date(2024, 5, 27)

    def test_preserves_time_of_day(self):
        assert project_next(D1, Frequency.WEEKLY) == D1 + timedelta(days=7)


# ── storage mapping ──────────────────────────────────────────────────────────

class TestStoredFrequency:
    def test_quarterly_stored_as_irregular(self):
        assert to_stored_frequency(Frequency.QUARTERLY) == StoredFrequency.IRREGULAR

    @pytest.mark.parametrize("freq", ["WEEKLY", "BIWEEKLY", "MONTHLY", "ANNUALLY", "UNKNOWN"])
    def test_other_buckets_map_by_name(self, freq):
        assert to_stored_frequency(freq).value == freq

    def test_every_bucket_has_a_storage_value(self):
        for freq in Frequency:
            assert isinstance(to_stored_frequency(freq), StoredFrequency)


# ── group_by_merchant ────────────────────────────────────────────────────────

class TestGroupByMerchant:
    def test_groups_below_minimum_dropped(self):
        records = series("Spotify", ["-9.99", "-9.99"], [30])
        assert group_by_merchant(records) == {}

    def test_exact_name_match_only(self):
        records = series("Netflix", ["-15.99"] * 3, [30, 30]) + [txn("NETFLIX", "-15.99", D1)]
        groups = group_by_merchant(records)
        assert list(groups) == ["Netflix"]
        assert len(groups["Netflix"]) == 3

    def test_custom_minimum(self):
        records = series("Gym", ["-40.00", "-40.00"], [7])
        assert "Gym" in group_by_merchant(records, min_occurrences=2)


# ── classify_group ───────────────────────────────────────────────────────────

class TestClassifyGroup:
    def test_netflix_monthly(self):
        candidate = classify_group("Netflix", series("Netflix", ["-15.99"] * 3, [30, 30]))
        assert candidate is not None
        assert candidate.merchant_name == "Netflix"
        assert candidate.frequency == Frequency.MONTHLY
        assert candidate.average_amount == Decimal("15.99")
        assert candidate.occurrence_count == 3

    def test_more_than_two_distinct_amounts_rejected(self):
        records = series("Netflix", ["-15.99", "-15.99", "-17.99", "-19.99"], [30, 31, 29])
        assert classify_group("Netflix", records) is None

    def test_two_distinct_amounts_allowed(self):
        records = series("Netflix", ["-15.99", "-15.99", "-17.99"], [30, 31, 29])
        candidate = classify_group("Netflix", records)
        assert candidate is not None
        assert candidate.average_amount == Decimal("16.66")

    def test_sign_counts_toward_distinct_amounts(self):
        records = series("Refunds Inc", ["-10.00", "10.00", "-12.00"], [30, 30])
        assert classify_group("Refunds Inc", records) is None

    def test_unordered_input_sorted_by_date(self):
        records = series("Rent", ["-1200.00"] * 3, [31, 30])
        candidate = classify_group("Rent", list(reversed(records)))
        assert candidate.last_occurrence_date == records[-1].date
        assert candidate.transaction_ids == [r.id for r in records]

    def test_next_projection_uses_last_date(self):
        records = series("Gym", ["-40.00"] * 4, [7, 7, 7])
        candidate = classify_group("Gym", records)
        assert candidate.frequency == Frequency.WEEKLY
        assert candidate.next_projected_date == records[-1].date + timedelta(days=7)

    def test_quarterly_group_stored_as_irregular(self):
        records = series("Insurance", ["-300.00"] * 3, [91, 92])
        candidate = classify_group("Insurance", records)
        assert candidate.frequency == Frequency.QUARTERLY
        assert candidate.stored_frequency == StoredFrequency.IRREGULAR

    def test_half_day_intervals_round_up(self):
        start = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
        records = [
            txn("Paper", "-5.00", start),
            txn("Paper", "-5.00", start + timedelta(days=7, hours=12)),
            txn("Paper", "-5.00", start + timedelta(days=15)),
        ]
        # 7.5 days → 8, 7.5 days → 8: average 8 is bi-weekly
        assert classify_group("Paper", records).frequency == Frequency.BIWEEKLY

    def test_empty_group(self):
        assert classify_group("Nobody", []) is None


# ── detect_patterns ──────────────────────────────────────────────────────────

class TestDetectPatterns:
    def test_one_candidate_per_qualifying_group(self):
        records = (
            series("Netflix", ["-15.99"] * 3, [30, 30])
            + series("Gym", ["-40.00"] * 5, [7, 7, 7, 7])
            + series("Coffee", ["-3.50", "-4.20", "-5.10"], [1, 2])
            + series("Bookstore", ["-12.00", "-12.00"], [30])
        )
        found = {c.merchant_name: c for c in detect_patterns(records)}
        assert set(found) == {"Netflix", "Gym"}
        assert found["Gym"].occurrence_count == 5

    def test_pending_transactions_ignored(self):
        records = series("Netflix", ["-15.99"] * 2, [30]) + [
            txn("Netflix", "-15.99", D1 + timedelta(days=60), status="pending"),
        ]
        assert detect_patterns(records) == []

    def test_no_transactions(self):
        assert detect_patterns([]) == []

    def test_deterministic_on_same_input(self):
        records = series("Netflix", ["-15.99"] * 3, [30, 30])
        assert detect_patterns(records) == detect_patterns(records)
