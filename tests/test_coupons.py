from datetime import timedelta

import pytest

import coupons
from database import utcnow
from errors import (ApplicabilityError, ConflictError, ExhaustedError, ExpiredError, InactiveError,
                    NotFoundError, ThresholdError, ValidationError)


def terms(expires, **overrides):
    data = {"description": "Festive offer", "discount_type": "percentage", "discount_value": 10,
            "expires_at": expires}
    data.update(overrides)
    return data


def line(store, price, quantity=1):
    return {"product_id": "p", "store_id": str(store["_id"]), "price": price, "quantity": quantity}


def approved_store_coupon(db, store, expires, code="KALA15", **overrides):
    coupon = coupons.create_store_coupon(db, store["_id"], terms(expires, code=code, discount_value=15, **overrides))
    return coupons.review_store_coupon(db, coupon["_id"], "approve", "admin")


@pytest.mark.parametrize("coupon, amount, expected", [
    ({"discount_type": "percentage", "discount_value": 20, "max_discount_amount": 500}, 3000, 500),
    ({"discount_type": "percentage", "discount_value": 50, "max_discount_amount": None}, 3000, 1500),
    ({"discount_type": "percentage", "discount_value": 10, "max_discount_amount": 0}, 3000, 0),
    ({"discount_type": "percentage", "discount_value": 10}, 125, 13),
    ({"discount_type": "fixed", "discount_value": 200}, 150, 150),
    ({"discount_type": "fixed", "discount_value": 200}, 999, 200),
])
def test_compute_discount(coupon, amount, expected):
    assert coupons.compute_discount(coupon, amount) == expected


def test_create_normalizes_code(db, expires):
    coupon = coupons.create_coupon(db, terms(expires, code=" save10 "))
    assert coupon["code"] == "SAVE10"
    assert coupon["used_count"] == 0
    assert coupons.get_coupon(db, "save10")["_id"] == coupon["_id"]


@pytest.mark.parametrize("overrides", [
    {"description": ""},
    {"expires_at": None},
    {"discount_type": "bogo"},
    {"discount_value": 0},
    {"discount_value": 120},
])
def test_create_rejects_bad_terms(db, expires, overrides):
    with pytest.raises(ValidationError):
        coupons.create_coupon(db, terms(expires, code="BAD", **overrides))


def test_codes_are_unique_across_tables(db, make_store, expires):
    store = make_store()
    coupons.create_coupon(db, terms(expires, code="SAVE10"))
    with pytest.raises(ConflictError):
        coupons.create_store_coupon(db, store["_id"], terms(expires, code="save10"))
    coupons.create_store_coupon(db, store["_id"], terms(expires, code="KALA5"))
    with pytest.raises(ConflictError):
        coupons.create_coupon(db, terms(expires, code="KALA5"))


def test_deleting_a_coupon_frees_its_code(db, make_store, expires):
    store = make_store()
    coupons.create_coupon(db, terms(expires, code="SAVE10"))
    coupons.delete_coupon(db, "SAVE10")
    coupon = coupons.create_store_coupon(db, store["_id"], terms(expires, code="SAVE10"))
    coupons.delete_store_coupon(db, store["_id"], coupon["_id"])
    assert coupons.create_coupon(db, terms(expires, code="SAVE10"))["code"] == "SAVE10"


def test_store_coupon_starts_pending_and_inactive(db, make_store, expires):
    store = make_store()
    coupon = coupons.create_store_coupon(db, store["_id"], terms(expires, code="KALA5", is_active=True,
                                                                 is_public=True))
    assert coupon["status"] == "pending"
    assert coupon["is_active"] is False
    assert coupon["is_public"] is False


def test_store_coupon_review_happens_once(db, make_store, expires):
    store = make_store()
    coupon = approved_store_coupon(db, store, expires)
    assert coupon["status"] == "approved"
    assert coupon["is_active"] is True
    with pytest.raises(ConflictError):
        coupons.review_store_coupon(db, coupon["_id"], "reject", "admin")


def test_unreviewed_store_coupon_is_not_a_valid_code(db, make_store, expires):
    store = make_store()
    coupons.create_store_coupon(db, store["_id"], terms(expires, code="KALA5"))
    with pytest.raises(NotFoundError):
        coupons.validate_coupon(db, "KALA5", [line(store, 1000)])


def test_store_coupon_only_discounts_its_own_products(db, make_store, expires):
    kala, other = make_store(name="Kala Ghar"), make_store(name="Other Crafts")
    approved_store_coupon(db, kala, expires)
    with pytest.raises(ApplicabilityError) as exc:
        coupons.validate_coupon(db, "KALA15", [line(other, 1000)])
    assert "Kala Ghar" in exc.value.message

    result = coupons.validate_coupon(db, "kala15", [line(kala, 1000), line(other, 5000)])
    assert result["applicable_amount"] == 1000
    assert result["discount"] == 150
    assert result["coupon"]["is_store_coupon"] is True
    assert len(result["applicable_items"]) == 1


def test_store_coupon_threshold_uses_store_subtotal(db, make_store, expires):
    kala, other = make_store(name="Kala Ghar"), make_store()
    approved_store_coupon(db, kala, expires, min_order_amount=2000)
    with pytest.raises(ThresholdError) as exc:
        coupons.validate_coupon(db, "KALA15", [line(kala, 1500), line(other, 5000)])
    assert "Kala Ghar" in exc.value.message


def test_global_coupon_applies_to_whole_cart(db, make_store, expires):
    a, b = make_store(), make_store()
    coupons.create_coupon(db, terms(expires, code="BIG20", discount_value=20, max_discount_amount=500))
    result = coupons.validate_coupon(db, "BIG20", [line(a, 1000, 2), line(b, 1000)])
    assert result["applicable_amount"] == 3000
    assert result["discount"] == 500
    assert result["coupon"]["is_store_coupon"] is False


def test_validation_failures(db, make_store, expires):
    store = make_store()
    cart = [line(store, 500)]
    coupons.create_coupon(db, terms(utcnow() - timedelta(days=1), code="OLD"))
    coupons.create_coupon(db, terms(expires, code="OFF", is_active=False))
    coupons.create_coupon(db, terms(expires, code="MIN", min_order_amount=1000))
    used = coupons.create_coupon(db, terms(expires, code="ONCE", usage_limit=1))
    db["coupon"].update_one({"_id": used["_id"]}, {"$set": {"used_count": 1}})

    with pytest.raises(NotFoundError):
        coupons.validate_coupon(db, "NOPE", cart)
    with pytest.raises(ExpiredError):
        coupons.validate_coupon(db, "OLD", cart)
    with pytest.raises(InactiveError):
        coupons.validate_coupon(db, "OFF", cart)
    with pytest.raises(ThresholdError):
        coupons.validate_coupon(db, "MIN", cart)
    with pytest.raises(ExhaustedError):
        coupons.validate_coupon(db, "ONCE", cart)
    with pytest.raises(ValidationError):
        coupons.validate_coupon(db, "", cart)
    with pytest.raises(ValidationError):
        coupons.validate_coupon(db, "MIN", [])


def test_validation_does_not_consume_uses(db, make_store, expires):
    store = make_store()
    coupons.create_coupon(db, terms(expires, code="SAVE10", usage_limit=1))
    for _ in range(3):
        coupons.validate_coupon(db, "SAVE10", [line(store, 500)])
    assert coupons.get_coupon(db, "SAVE10")["used_count"] == 0


def test_redeem_respects_usage_limit(db, make_store, expires):
    store = make_store()
    coupons.create_coupon(db, terms(expires, code="ONCE", usage_limit=1))
    summary = coupons.validate_coupon(db, "ONCE", [line(store, 500)])["coupon"]
    assert coupons.redeem_coupon(db, summary)["used_count"] == 1
    with pytest.raises(ExhaustedError):
        coupons.redeem_coupon(db, summary)


def test_public_listing_hides_private_inactive_and_expired(db, expires):
    coupons.create_coupon(db, terms(expires, code="PUBLIC", is_public=True))
    coupons.create_coupon(db, terms(expires, code="PRIVATE"))
    coupons.create_coupon(db, terms(expires, code="PAUSED", is_public=True, is_active=False))
    coupons.create_coupon(db, terms(utcnow() - timedelta(days=1), code="GONE", is_public=True))
    assert [c["code"] for c in coupons.list_public_coupons(db)] == ["PUBLIC"]


def test_admin_store_coupon_listing_names_the_store(db, make_store, expires):
    store = make_store(name="Kala Ghar")
    coupons.create_store_coupon(db, store["_id"], terms(expires, code="KALA5"))
    listed = coupons.list_admin_store_coupons(db, "pending")
    assert [(c["code"], c["store_name"]) for c in listed] == [("KALA5", "Kala Ghar")]
