"""Tests for the cart API."""

from datetime import datetime, timedelta

from models import CartItem

SESSION_HEADERS = {"X-Session-Id": "anon-session-1"}


def _add(client, headers, product_id, quantity=1, variant=None):
    payload = {"product_id": product_id, "quantity": quantity}
    if variant is not None:
        payload["variant"] = variant
    return client.post("/api/cart/add", json=payload, headers=headers)


class TestAddToCart:
    def test_add_item(self, client, product, customer_headers):
        response = _add(client, customer_headers, product.id, 2)

        assert response.status_code == 200
        cart = response.json()["cart"]
        assert cart["item_count"] == 2
        assert cart["total"] == 40.0
        assert cart["items"][0]["product_name"] == "Widget"
        assert cart["items"][0]["subtotal"] == 40.0

    def test_same_product_and_variant_merges(self, client, product, customer_headers):
        _add(client, customer_headers, product.id, 1, {"name": "size", "value": "M"})
        response = _add(client, customer_headers, product.id, 2, {"name": "size", "value": "M"})

        items = response.json()["cart"]["items"]
        assert len(items) == 1
        assert items[0]["quantity"] == 3

    def test_different_variant_is_a_separate_line(self, client, product, customer_headers):
        _add(client, customer_headers, product.id, 1, {"name": "size", "value": "M"})
        response = _add(client, customer_headers, product.id, 1, {"name": "size", "value": "L"})

        assert len(response.json()["cart"]["items"]) == 2

    def test_stock_counts_existing_quantity(self, client, product, customer_headers):
        _add(client, customer_headers, product.id, 8)

        response = _add(client, customer_headers, product.id, 3)

        assert response.status_code == 400
        assert response.json()["error"] == "Cannot add more. Only 10 available"

    def test_insufficient_stock(self, client, second_product, customer_headers):
        response = _add(client, customer_headers, second_product.id, 4)

        assert response.status_code == 400
        assert response.json()["error"] == "Insufficient stock. Only 3 available"

    def test_inactive_product(self, client, db, product, customer_headers):
        product.is_active = False
        db.commit()

        response = _add(client, customer_headers, product.id)

        assert response.status_code == 400
        assert response.json()["error"] == "Product is not available"

    def test_unknown_product(self, client, customer_headers):
        response = _add(client, customer_headers, 999)

        assert response.status_code == 404

    def test_price_captured_when_added(self, client, db, product, customer_headers):
        _add(client, customer_headers, product.id, 1)
        product.price = 25.0
        db.commit()

        cart = client.get("/api/cart", headers=customer_headers).json()["cart"]

        assert cart["items"][0]["price"] == 20.0

    def test_line_count_cached(self, client, redis_client, product, second_product, customer, customer_headers):
        _add(client, customer_headers, product.id)
        _add(client, customer_headers, second_product.id)

        assert redis_client.get(f"cart:user:{customer.id}") == "2"


class TestCartOwnership:
    def test_session_cart(self, client, product):
        response = _add(client, SESSION_HEADERS, product.id, 1)

        assert response.status_code == 200
        cart = client.get("/api/cart", headers=SESSION_HEADERS).json()["cart"]
        assert cart["item_count"] == 1

    def test_session_cart_is_separate_from_user_cart(self, client, product, customer_headers):
        _add(client, SESSION_HEADERS, product.id, 1)

        cart = client.get("/api/cart", headers=customer_headers).json()["cart"]

        assert cart["items"] == []

    def test_owner_required(self, client, product):
        response = _add(client, {}, product.id)

        assert response.status_code == 400
        assert response.json()["error"] == "Authentication or a session id is required"

    def test_other_customers_line_not_found(self, client, product, customer_headers, other_headers):
        item_id = _add(client, customer_headers, product.id).json()["cart"]["items"][0]["id"]

        response = client.put("/api/cart/update", json={"item_id": item_id, "quantity": 2}, headers=other_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Item not found in cart"


class TestChangeCart:
    def test_update_quantity(self, client, product, customer_headers):
        item_id = _add(client, customer_headers, product.id).json()["cart"]["items"][0]["id"]

        response = client.put("/api/cart/update", json={"item_id": item_id, "quantity": 5}, headers=customer_headers)

        assert response.json()["cart"]["items"][0]["quantity"] == 5

    def test_update_beyond_stock(self, client, product, customer_headers):
        item_id = _add(client, customer_headers, product.id).json()["cart"]["items"][0]["id"]

        response = client.put("/api/cart/update", json={"item_id": item_id, "quantity": 11}, headers=customer_headers)

        assert response.status_code == 400

    def test_update_rejects_zero(self, client, product, customer_headers):
        item_id = _add(client, customer_headers, product.id).json()["cart"]["items"][0]["id"]

        response = client.put("/api/cart/update", json={"item_id": item_id, "quantity": 0}, headers=customer_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"

    def test_remove_item(self, client, redis_client, product, customer, customer_headers):
        item_id = _add(client, customer_headers, product.id).json()["cart"]["items"][0]["id"]

        response = client.delete(f"/api/cart/remove/{item_id}", headers=customer_headers)

        assert response.json()["cart"]["items"] == []
        assert redis_client.get(f"cart:user:{customer.id}") == "0"

    def test_clear(self, client, redis_client, product, second_product, customer, customer_headers):
        _add(client, customer_headers, product.id)
        _add(client, customer_headers, second_product.id)

        response = client.delete("/api/cart/clear", headers=customer_headers)

        assert response.json()["message"] == "Cart cleared"
        assert client.get("/api/cart", headers=customer_headers).json()["cart"]["items"] == []
        assert redis_client.get(f"cart:user:{customer.id}") is None


class TestAbandonedCarts:
    def test_lists_stale_carts(self, client, db, product, customer, admin_headers):
        stale = datetime.utcnow() - timedelta(hours=30)
        db.add(CartItem(user_id=customer.id, product_id=product.id, quantity=2, price=20.0,
                        created_at=stale, updated_at=stale))
        db.add(CartItem(session_id="fresh", product_id=product.id, quantity=1, price=20.0))
        db.commit()

        response = client.get("/api/cart/abandoned", params={"hours": 24}, headers=admin_headers)

        carts = response.json()["carts"]
        assert len(carts) == 1
        assert carts[0]["email"] == "jane@example.com"
        assert carts[0]["item_count"] == 2
        assert carts[0]["value"] == 40.0

    def test_admin_only(self, client, customer_headers):
        response = client.get("/api/cart/abandoned", headers=customer_headers)

        assert response.status_code == 403
