"""
Test suite for the commission engine
Covers:
- Rate clamping and half-up currency rounding
- Commission split with and without a discount
- Discount capped by the 8% ceiling and by the base rate
- Picking the highest active discount for a date
- Discount status labels
"""

from datetime import datetime, timedelta, timezone

import pytest

from carwithdriver.routes.commission import (
    DEFAULT_COMMISSION_RATE, clamp_rate, round_currency, compute_commission, diff_commission,
    find_active_discount, discount_status, serialize_discount
)
from carwithdriver.routes.shared import db
from conftest import run


class TestRounding:
    """Rate and currency helpers"""

    def test_clamp_rate_bounds(self):
        assert clamp_rate(-0.5) == 0.0
        assert clamp_rate(1.7) == 1.0
        assert clamp_rate(0.12) == 0.12
        print("✓ Rates are clamped to 0..1")

    def test_clamp_rate_fallback(self):
        assert clamp_rate(None) == DEFAULT_COMMISSION_RATE
        assert clamp_rate(float("nan")) == DEFAULT_COMMISSION_RATE
        assert clamp_rate("0.1", fallback=0.0) == 0.0
        print("✓ Non-numeric rates fall back")

    def test_round_currency_half_up(self):
        assert round_currency(7.125) == 7.13
        assert round_currency(10) == 10
        assert round_currency(float("inf")) == 0.0
        print("✓ Currency rounds half up to cents")


class TestComputeCommission:
    """Commission split for a gross booking amount"""

    def test_default_rate(self):
        fields = compute_commission(150)
        assert fields["commission_base_rate"] == 0.08
        assert fields["commission_rate"] == 0.08
        assert fields["commission_amount"] == 12.0
        assert fields["driver_earnings"] == 138.0
        assert fields["commission_discount_id"] is None
        print("✓ 8% commission on 150 is 12, driver keeps 138")

    def test_amount_and_earnings_sum_to_gross(self):
        fields = compute_commission(333.33)
        assert round_currency(fields["commission_amount"] + fields["driver_earnings"]) == 333.33
        print("✓ Commission plus earnings equals gross")

    def test_discount_lowers_rate(self):
        discount = {"id": "d1", "name": "Low season", "discount_rate": 0.03}
        fields = compute_commission(150, discount=discount)
        assert fields["commission_discount_rate"] == 0.03
        assert fields["commission_rate"] == pytest.approx(0.05)
        assert fields["commission_amount"] == 7.5
        assert fields["driver_earnings"] == 142.5
        assert fields["commission_discount_label"] == "Low season"
        assert fields["commission_discount_id"] == "d1"
        print("✓ 3% discount brings commission to 5%")

    def test_discount_capped_by_base_rate(self):
        fields = compute_commission(100, base_rate=0.05, discount={"discount_rate": 0.08})
        assert fields["commission_discount_rate"] == 0.05
        assert fields["commission_rate"] == 0.0
        assert fields["commission_amount"] == 0.0
        assert fields["driver_earnings"] == 100.0
        print("✓ Discount never exceeds the base rate")

    def test_discount_capped_at_ceiling(self):
        fields = compute_commission(100, base_rate=0.2, discount={"discount_rate": 0.5})
        assert fields["commission_discount_rate"] == 0.08
        assert fields["commission_rate"] == pytest.approx(0.12)
        print("✓ Discount is capped at 8%")

    def test_negative_gross(self):
        fields = compute_commission(-40)
        assert fields["commission_amount"] == 0.0
        assert fields["driver_earnings"] == 0.0
        print("✓ Negative totals are treated as zero")

    def test_diff_commission_ignores_tiny_rate_noise(self):
        booking = {"commission_rate": 0.05, "commission_amount": 7.5, "commission_discount_label": None}
        fields = {"commission_rate": 0.0500000001, "commission_amount": 7.5, "commission_discount_label": "Promo"}
        assert diff_commission(booking, fields) == {"commission_discount_label": "Promo"}
        print("✓ Only real changes are reported")


class TestDiscountLookup:
    """Discount documents stored in MongoDB"""

    def test_highest_rate_wins(self, client):
        now = datetime.now(timezone.utc)
        window = {
            "active": True,
            "start_date": (now - timedelta(days=5)).isoformat(),
            "end_date": (now + timedelta(days=5)).isoformat(),
        }
        run(db.commission_discounts.insert_many([
            {"id": "small", "name": "Small", "discount_rate": 0.01, **window},
            {"id": "big", "name": "Big", "discount_rate": 0.04, **window},
            {"id": "off", "name": "Disabled", "discount_rate": 0.08, **window, "active": False},
        ]))

        discount = run(find_active_discount(now))
        assert discount is not None
        assert discount["id"] == "big", f"Expected the 4% discount, got {discount['id']}"
        assert "_id" not in discount
        print("✓ Highest active discount selected")

    def test_no_discount_outside_window(self, client):
        now = datetime.now(timezone.utc)
        run(db.commission_discounts.insert_one({
            "id": "later", "name": "Later", "discount_rate": 0.02, "active": True,
            "start_date": (now + timedelta(days=10)).isoformat(),
            "end_date": (now + timedelta(days=20)).isoformat(),
        }))
        assert run(find_active_discount(now)) is None
        print("✓ Future discounts do not apply today")


class TestDiscountStatus:
    """Status labels used by the admin console"""

    def test_statuses(self):
        now = datetime(2025, 6, 15, tzinfo=timezone.utc)
        base = {"start_date": "2025-06-01T00:00:00+00:00", "end_date": "2025-06-30T00:00:00+00:00"}
        assert discount_status({**base, "active": True}, now) == "active"
        assert discount_status({**base, "active": False}, now) == "disabled"
        assert discount_status({**base, "active": True}, datetime(2025, 5, 1, tzinfo=timezone.utc)) == "scheduled"
        assert discount_status({**base, "active": True}, datetime(2025, 7, 1, tzinfo=timezone.utc)) == "expired"
        print("✓ Discount status labels")

    def test_serialize_discount_percent(self):
        data = serialize_discount({"_id": "x", "id": "d", "discount_rate": 0.025, "active": False})
        assert "_id" not in data
        assert data["discount_percent"] == 2.5
        assert data["status"] == "disabled"
        assert serialize_discount(None) is None
        print("✓ Discount serialized with percent")
