"""Tests for the cart and wishlist."""
import pytest
from sqlalchemy.exc import IntegrityError

from storefront.models import CartItem
from storefront.services.cart_service import CartService


class TestAddToCart:
    def test_repeated_add_merges_into_one_line(self, client, session_factory, customer, product):
        client.post("/api/cart", json={"product_id": product.id, "quantity": 2}, headers=customer.headers)
        response = client.post("/api/cart", json={"product_id": product.id, "quantity": 3},
                               headers=customer.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 1
        assert data["items"][0]["quantity"] == 5
        assert data["subtotal"] == 500000

        with session_factory() as db:
            assert db.query(CartItem).filter(CartItem.user_id == customer.id).count() == 1

    def test_variants_are_separate_lines_priced_with_modifier(self, client, customer, shirt):
        client.post("/api/cart", json={"product_id": shirt.id, "variant_id": shirt.medium.id},
                    headers=customer.headers)
        response = client.post("/api/cart", json={"product_id": shirt.id, "variant_id": shirt.large.id},
                               headers=customer.headers)

        data = response.json()
        assert data["count"] == 2
        prices = {item["variant_info"]: item["unit_price"] for item in data["items"]}
        assert prices == {"Size: M": 150000, "Size: XL": 160000}
        assert data["subtotal"] == 310000

    def test_variant_of_another_product_is_rejected(self, client, customer, shirt, product):
        response = client.post("/api/cart", json={"product_id": product.id, "variant_id": shirt.medium.id},
                               headers=customer.headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Variant not found"

    def test_inactive_product_is_rejected(self, client, customer, make_product):
        retired = make_product(name="Old Phone", is_active=False)
        response = client.post("/api/cart", json={"product_id": retired.id}, headers=customer.headers)
        assert response.status_code == 404

    def test_quantity_must_be_positive(self, client, customer, product):
        response = client.post("/api/cart", json={"product_id": product.id, "quantity": 0},
                               headers=customer.headers)
        assert response.status_code == 422

    def test_requires_authentication(self, client, product):
        response = client.post("/api/cart", json={"product_id": product.id})
        assert response.status_code == 401
        assert response.json()["error_type"] == "AuthenticationError"


class TestCartItems:
    def test_update_remove_and_clear(self, client, customer, product, shirt):
        added = client.post("/api/cart", json={"product_id": product.id}, headers=customer.headers).json()
        item_id = added["items"][0]["id"]
        client.post("/api/cart", json={"product_id": shirt.id}, headers=customer.headers)

        updated = client.put(f"/api/cart/{item_id}", json={"quantity": 4}, headers=customer.headers).json()
        line = next(item for item in updated["items"] if item["id"] == item_id)
        assert line["quantity"] == 4

        removed = client.delete(f"/api/cart/{item_id}", headers=customer.headers).json()
        assert removed["count"] == 1

        assert client.delete("/api/cart", headers=customer.headers).status_code == 200
        assert client.get("/api/cart", headers=customer.headers).json()["count"] == 0

    def test_cannot_touch_another_users_item(self, client, customer, other_customer, product):
        added = client.post("/api/cart", json={"product_id": product.id}, headers=customer.headers).json()
        item_id = added["items"][0]["id"]

        response = client.put(f"/api/cart/{item_id}", json={"quantity": 9}, headers=other_customer.headers)
        assert response.status_code == 404
        assert client.delete(f"/api/cart/{item_id}", headers=other_customer.headers).status_code == 404


class TestWishlist:
    def test_add_list_remove(self, client, customer, product):
        response = client.post("/api/wishlist", json={"product_id": product.id}, headers=customer.headers)
        assert response.status_code == 201

        items = client.get("/api/wishlist", headers=customer.headers).json()
        assert [item["product"]["name"] for item in items] == ["Wireless Mouse"]

        assert client.delete(f"/api/wishlist/{product.id}", headers=customer.headers).status_code == 200
        assert client.get("/api/wishlist", headers=customer.headers).json() == []

    def test_duplicate_is_a_conflict(self, client, customer, product):
        client.post("/api/wishlist", json={"product_id": product.id}, headers=customer.headers)
        response = client.post("/api/wishlist", json={"product_id": product.id}, headers=customer.headers)
        assert response.status_code == 409

    def test_remove_missing_entry(self, client, customer, product):
        response = client.delete(f"/api/wishlist/{product.id}", headers=customer.headers)
        assert response.status_code == 404


class TestOneLinePerProduct:
    def test_database_rejects_duplicate_line_without_variant(self, session_factory, customer, product):
        with session_factory() as db:
            db.add(CartItem(user_id=customer.id, product_id=product.id, quantity=1))
            db.commit()
            db.add(CartItem(user_id=customer.id, product_id=product.id, quantity=1))
            with pytest.raises(IntegrityError):
                db.commit()
            db.rollback()
            assert db.query(CartItem).count() == 1

    def test_variant_lines_stay_separate(self, session_factory, customer, shirt):
        with session_factory() as db:
            db.add_all([
                CartItem(user_id=customer.id, product_id=shirt.id, quantity=1),
                CartItem(user_id=customer.id, product_id=shirt.id, variant_id=shirt.medium.id, quantity=1),
                CartItem(user_id=customer.id, product_id=shirt.id, variant_id=shirt.large.id, quantity=1),
            ])
            db.commit()
            assert db.query(CartItem).count() == 3

    def test_concurrent_insert_is_merged(self, client, session_factory, customer, product, monkeypatch):
        merge = CartService._merge_line
        raced = []

        def insert_after_competitor(self, db, user_id, product_id, variant_id, quantity):
            if not raced:
                raced.append(True)
                with session_factory() as other:
                    other.add(CartItem(user_id=user_id, product_id=product_id, quantity=2))
                    other.commit()
                db.add(CartItem(user_id=user_id, product_id=product_id, variant_id=variant_id, quantity=quantity))
                db.flush()
            return merge(self, db, user_id, product_id, variant_id, quantity)

        monkeypatch.setattr(CartService, "_merge_line", insert_after_competitor)

        response = client.post("/api/cart", json={"product_id": product.id, "quantity": 3},
                               headers=customer.headers)

        assert response.status_code == 200
        assert [item["quantity"] for item in response.json()["items"]] == [5]
        with session_factory() as db:
            assert db.query(CartItem).count() == 1
