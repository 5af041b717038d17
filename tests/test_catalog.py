"""Tests for products, categories, inventory, reviews and wishlists."""

import pytest

from models import Order, Product, Review
from services.catalog_service import slugify


class TestSlugify:
    def test_slugify(self):
        assert slugify("Ergonomic Desk Chair (Black)") == "ergonomic-desk-chair-black"

    def test_empty_name(self):
        assert slugify("!!!") == "product"


class TestListProducts:
    def test_only_active_products(self, client, db, product, second_product):
        second_product.is_active = False
        db.commit()

        response = client.get("/api/products")

        body = response.json()
        assert [item["slug"] for item in body["products"]] == ["widget"]
        assert body["pagination"] == {"page": 1, "limit": 12, "total_count": 1, "total_pages": 1}

    def test_sort_by_price(self, client, product, second_product):
        ascending = client.get("/api/products", params={"sort": "price_asc"}).json()["products"]
        descending = client.get("/api/products", params={"sort": "price_desc"}).json()["products"]

        assert [item["price"] for item in ascending] == [15.0, 20.0]
        assert [item["price"] for item in descending] == [20.0, 15.0]

    def test_price_range(self, client, product, second_product):
        response = client.get("/api/products", params={"min_price": 16, "max_price": 25})

        assert [item["name"] for item in response.json()["products"]] == ["Widget"]

    def test_search_name_and_description(self, client, product, second_product):
        by_name = client.get("/api/products", params={"search": "WIDG"}).json()["products"]
        by_description = client.get("/api/products", params={"search": "shiny"}).json()["products"]

        assert [item["name"] for item in by_name] == ["Widget"]
        assert [item["name"] for item in by_description] == ["Gadget"]

    def test_category_filter(self, client, product):
        assert len(client.get("/api/products", params={"category": "gadgets"}).json()["products"]) == 1
        assert client.get("/api/products", params={"category": "books"}).json()["products"] == []

    def test_pagination(self, client, product, second_product):
        response = client.get("/api/products", params={"sort": "price_asc", "page": 2, "limit": 1})

        body = response.json()
        assert [item["name"] for item in body["products"]] == ["Widget"]
        assert body["pagination"]["total_pages"] == 2

    def test_unknown_sort_rejected(self, client):
        assert client.get("/api/products", params={"sort": "random"}).status_code == 400

    def test_featured(self, client, db, product, second_product):
        second_product.is_featured = True
        db.commit()

        response = client.get("/api/products/featured")

        assert [item["name"] for item in response.json()["products"]] == ["Gadget"]

    def test_search_endpoint(self, client, product, second_product):
        response = client.get("/api/products/search", params={"q": "gadget"})

        assert [item["name"] for item in response.json()["products"]] == ["Gadget"]


class TestGetProduct:
    def test_by_slug_counts_view(self, client, db, product):
        client.get("/api/products/widget")
        response = client.get(f"/api/products/{product.id}")

        assert response.json()["product"]["name"] == "Widget"
        db.refresh(product)
        assert product.view_count == 2

    def test_inactive_is_not_found(self, client, db, product):
        product.is_active = False
        db.commit()

        response = client.get("/api/products/widget")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Product not found"}


class TestManageProducts:
    def test_create_assigns_unique_slug(self, client, admin_headers, product, category):
        payload = {"name": "Widget", "price": 30, "stock": 5, "category_id": category.id}

        response = client.post("/api/products", json=payload, headers=admin_headers)

        assert response.status_code == 201
        assert response.json()["product"]["slug"] == "widget-2"

    def test_create_with_unknown_category(self, client, admin_headers):
        response = client.post("/api/products", json={"name": "Lamp", "price": 30, "category_id": 99}, headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Category not found"

    def test_update(self, client, admin_headers, product):
        response = client.put(f"/api/products/{product.id}", json={"price": 22.5, "stock": 4}, headers=admin_headers)

        assert response.json()["product"]["price"] == 22.5
        assert response.json()["product"]["stock"] == 4

    def test_delete_is_soft(self, client, db, admin_headers, product):
        response = client.delete(f"/api/products/{product.id}", headers=admin_headers)

        assert response.status_code == 200
        db.refresh(product)
        assert product.is_active is False
        assert client.get("/api/products").json()["products"] == []

    def test_customer_cannot_create(self, client, customer_headers):
        response = client.post("/api/products", json={"name": "Lamp", "price": 30}, headers=customer_headers)

        assert response.status_code == 403


class TestCategories:
    def test_list(self, client, category):
        response = client.get("/api/categories")

        assert [item["slug"] for item in response.json()["categories"]] == ["gadgets"]

    def test_category_with_products(self, client, product, second_product):
        response = client.get("/api/categories/gadgets")

        body = response.json()
        assert body["category"]["name"] == "Gadgets"
        assert [item["name"] for item in body["products"]] == ["Gadget", "Widget"]

    def test_unknown(self, client):
        assert client.get("/api/categories/nope").status_code == 404


class TestInventory:
    def test_low_stock(self, client, admin_headers, product, second_product):
        response = client.get("/api/inventory", params={"low_stock": True}, headers=admin_headers)

        assert [item["name"] for item in response.json()["products"]] == ["Gadget"]

    def test_full_listing_sorted_by_stock(self, client, admin_headers, product, second_product):
        response = client.get("/api/inventory", headers=admin_headers)

        assert [item["stock"] for item in response.json()["products"]] == [3, 10]

    def test_admin_only(self, client, customer_headers):
        assert client.get("/api/inventory", headers=customer_headers).status_code == 403


class TestReviews:
    def _review(self, client, headers, product_id, rating=4):
        return client.post(
            "/api/reviews",
            json={"product_id": product_id, "rating": rating, "title": "Nice", "comment": "Works as described"},
            headers=headers,
        )

    def test_submitted_reviews_are_pending(self, client, product, customer_headers):
        response = self._review(client, customer_headers, product.id)

        assert response.status_code == 201
        assert response.json()["review"]["status"] == "pending"
        assert response.json()["review"]["is_verified_purchase"] is False
        assert client.get(f"/api/reviews/product/{product.id}").json()["reviews"] == []

    def test_one_review_per_product(self, client, product, customer_headers):
        self._review(client, customer_headers, product.id)

        response = self._review(client, customer_headers, product.id)

        assert response.status_code == 400
        assert response.json()["error"] == "You have already reviewed this product"

    def test_verified_purchase(self, client, db, place_order, product, customer_headers):
        order_id = place_order([{"product_id": product.id, "quantity": 1}]).json()["order"]["id"]
        db.get(Order, order_id).order_status = "delivered"
        db.commit()

        response = self._review(client, customer_headers, product.id)

        assert response.json()["review"]["is_verified_purchase"] is True

    def test_inactive_product(self, client, db, product, customer_headers):
        product.is_active = False
        db.commit()

        assert self._review(client, customer_headers, product.id).status_code == 404

    def test_moderation_updates_rating(self, client, db, product, customer_headers, other_headers, admin_headers):
        first = self._review(client, customer_headers, product.id, rating=5).json()["review"]["id"]
        second = self._review(client, other_headers, product.id, rating=4).json()["review"]["id"]

        client.put(f"/api/admin/reviews/{first}", json={"status": "approved"}, headers=admin_headers)
        client.put(f"/api/admin/reviews/{second}", json={"status": "approved"}, headers=admin_headers)

        db.refresh(product)
        assert product.rating == 4.5
        assert product.review_count == 2
        public = client.get(f"/api/reviews/product/{product.id}").json()["reviews"]
        assert {review["author"] for review in public} == {"Jane Customer", "Omar Other"}

        client.delete(f"/api/admin/reviews/{first}", headers=admin_headers)

        db.refresh(product)
        assert product.rating == 4.0
        assert product.review_count == 1

    def test_rejected_review_not_counted(self, client, db, product, customer_headers, admin_headers):
        review_id = self._review(client, customer_headers, product.id, rating=1).json()["review"]["id"]

        client.put(f"/api/admin/reviews/{review_id}", json={"status": "rejected"}, headers=admin_headers)

        db.refresh(product)
        assert product.rating == 0.0
        assert db.get(Review, review_id).status == "rejected"

    def test_pending_queue(self, client, product, customer_headers, admin_headers):
        self._review(client, customer_headers, product.id)

        response = client.get("/api/admin/reviews", params={"status": "pending"}, headers=admin_headers)

        assert len(response.json()["reviews"]) == 1


class TestWishlist:
    def test_add_is_idempotent(self, client, product, customer_headers):
        client.post("/api/wishlist", json={"product_id": product.id}, headers=customer_headers)
        response = client.post("/api/wishlist", json={"product_id": product.id}, headers=customer_headers)

        items = response.json()["items"]
        assert len(items) == 1
        assert items[0]["product"]["slug"] == "widget"

    def test_add_unknown_product(self, client, customer_headers):
        response = client.post("/api/wishlist", json={"product_id": 404}, headers=customer_headers)

        assert response.status_code == 404

    def test_remove(self, client, product, customer_headers):
        client.post("/api/wishlist", json={"product_id": product.id}, headers=customer_headers)

        response = client.delete(f"/api/wishlist/{product.id}", headers=customer_headers)

        assert response.json()["items"] == []

    def test_remove_missing(self, client, product, customer_headers):
        response = client.delete(f"/api/wishlist/{product.id}", headers=customer_headers)

        assert response.status_code == 404
        assert response.json()["error"] == "Product not in wishlist"

    @pytest.mark.parametrize("method", ["get", "delete"])
    def test_requires_authentication(self, client, method):
        response = getattr(client, method)("/api/wishlist" if method == "get" else "/api/wishlist/1")

        assert response.status_code == 401


def test_product_rating_defaults(db, category):
    product = Product(name="Lamp", slug="lamp", price=10.0, stock=1, category_id=category.id)
    db.add(product)
    db.commit()

    assert product.rating == 0.0
    assert product.review_count == 0
