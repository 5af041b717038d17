"""Tests for coupon discounts, validation and redemption."""

from datetime import datetime, timedelta

import pytest

from errors import InvalidCouponError
from models import Coupon, CouponRedemption
from services.coupon_service import CouponService, calculate_discount


def _coupon(**overrides):
    now = datetime.utcnow()
    fields = {
        "code": "TEST",
        "discount_type": "percentage",
        "discount_value": 10,
        "usage_count": 0,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=1),
        "is_active": True,
    }
    fields.update(overrides)
    return Coupon(**fields)


class TestCalculateDiscount:
    def test_percentage(self):
        assert calculate_discount(_coupon(), 100.0) == 10.0

    def test_percentage_capped(self):
        assert calculate_discount(_coupon(discount_value=50, max_discount_amount=20), 100.0) == 20.0

    def test_fixed_amount(self):
        assert calculate_discount(_coupon(discount_type="fixed", discount_value=15), 100.0) == 15.0

    def test_fixed_amount_never_exceeds_subtotal(self):
        assert calculate_discount(_coupon(discount_type="fixed", discount_value=80), 30.0) == 30.0

    def test_below_minimum_order_value(self):
        assert calculate_discount(_coupon(min_order_value=50), 49.99) == 0.0

    def test_rounded_to_cents(self):
        assert calculate_discount(_coupon(discount_value=15), 33.33) == 5.0


class TestValidateEndpoint:
    def test_valid_coupon(self, client, coupon, customer_headers):
        response = client.post("/api/coupons/validate", json={"code": "save10", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["coupon"]["code"] == "SAVE10"
        assert body["coupon"]["discount"] == 10.0

    def test_validation_does_not_redeem(self, client, db, coupon, customer_headers):
        client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)

        db.expire_all()
        assert db.get(Coupon, coupon.id).usage_count == 0

    def test_unknown_code(self, client, customer_headers):
        response = client.post("/api/coupons/validate", json={"code": "NOPE", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Invalid coupon code"

    def test_expired(self, client, db, coupon, customer_headers):
        coupon.valid_until = datetime.utcnow() - timedelta(hours=1)
        db.commit()

        response = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 400
        assert "expired" in response.json()["error"]

    def test_inactive(self, client, db, coupon, customer_headers):
        coupon.is_active = False
        db.commit()

        response = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 400

    def test_usage_limit_reached(self, client, db, coupon, customer_headers):
        coupon.usage_limit = 5
        coupon.usage_count = 5
        db.commit()

        response = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 400
        assert "usage limit" in response.json()["error"]

    def test_per_customer_limit(self, client, db, coupon, customer, customer_headers, other_headers):
        coupon.usage_per_customer = 1
        db.add(CouponRedemption(coupon_id=coupon.id, user_id=customer.id))
        db.commit()

        mine = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)
        theirs = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=other_headers)

        assert mine.status_code == 400
        assert theirs.status_code == 200

    def test_minimum_order_value(self, client, db, coupon, customer_headers):
        coupon.min_order_value = 200
        db.commit()

        response = client.post("/api/coupons/validate", json={"code": "SAVE10", "subtotal": 100}, headers=customer_headers)

        assert response.status_code == 400
        assert "Minimum order value" in response.json()["error"]


class TestRedeem:
    def test_conditional_increment_stops_at_limit(self, db, coupon, customer):
        coupon.usage_limit = 1
        db.commit()
        service = CouponService()

        service.redeem(db, coupon, customer.id, order_id=None)
        db.commit()

        with pytest.raises(InvalidCouponError):
            service.redeem(db, coupon, customer.id, order_id=None)
        db.rollback()

        db.expire_all()
        assert db.get(Coupon, coupon.id).usage_count == 1
        assert db.query(CouponRedemption).count() == 1

    def test_unlimited_coupon(self, db, coupon, customer):
        service = CouponService()

        for _ in range(3):
            service.redeem(db, coupon, customer.id, order_id=None)
        db.commit()

        db.expire_all()
        assert db.get(Coupon, coupon.id).usage_count == 3


class TestCouponAdmin:
    @pytest.fixture
    def payload(self):
        now = datetime.utcnow()
        return {
            "code": "spring25",
            "discount_type": "fixed",
            "discount_value": 25,
            "usage_limit": 100,
            "valid_from": now.isoformat(),
            "valid_until": (now + timedelta(days=10)).isoformat(),
        }

    def test_create_uppercases_code(self, client, admin_headers, payload):
        response = client.post("/api/coupons", json=payload, headers=admin_headers)

        assert response.status_code == 201
        assert response.json()["coupon"]["code"] == "SPRING25"
        assert response.json()["coupon"]["usage_count"] == 0

    def test_duplicate_code_rejected(self, client, admin_headers, payload):
        client.post("/api/coupons", json=payload, headers=admin_headers)

        response = client.post("/api/coupons", json={**payload, "code": "SPRING25"}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Coupon code already exists"

    def test_window_must_be_ordered(self, client, admin_headers, payload):
        payload["valid_until"] = payload["valid_from"]

        response = client.post("/api/coupons", json=payload, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_update_and_delete(self, client, admin_headers, coupon):
        updated = client.put(f"/api/coupons/{coupon.id}", json={"usage_limit": 3}, headers=admin_headers)
        deleted = client.delete(f"/api/coupons/{coupon.id}", headers=admin_headers)
        missing = client.get(f"/api/coupons/{coupon.id}", headers=admin_headers)

        assert updated.json()["coupon"]["usage_limit"] == 3
        assert deleted.status_code == 200
        assert missing.status_code == 404

    def test_customers_cannot_manage_coupons(self, client, customer_headers):
        assert client.get("/api/coupons", headers=customer_headers).status_code == 403
