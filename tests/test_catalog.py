"""Tests for product and category browsing and admin catalog management."""
from storefront.models import Order, OrderItem, Review


class TestListProducts:
    def test_hides_inactive_products_by_default(self, client, make_product):
        make_product(name="Visible Lamp")
        make_product(name="Hidden Lamp", is_active=False)

        response = client.get("/api/products")
        assert response.status_code == 200
        data = response.json()
        assert [p["name"] for p in data["products"]] == ["Visible Lamp"]
        assert data["total"] == 1

        response = client.get("/api/products", params={"active": "false"})
        assert response.json()["total"] == 2

    def test_search_matches_name_and_description(self, client, make_product):
        make_product(name="Desk Lamp")
        make_product(name="Mug", description="Keeps your LAMP oil warm")
        make_product(name="Keyboard")

        response = client.get("/api/products", params={"search": "lamp"})
        names = sorted(p["name"] for p in response.json()["products"])
        assert names == ["Desk Lamp", "Mug"]

    def test_filter_by_category_slug_or_id(self, client, make_product, category):
        make_product(name="Laptop", category_id=category.id)
        make_product(name="Sofa")

        by_slug = client.get("/api/products", params={"category": "electronics"}).json()
        by_id = client.get("/api/products", params={"category": category.id}).json()
        assert [p["name"] for p in by_slug["products"]] == ["Laptop"]
        assert by_id["total"] == 1
        assert by_slug["products"][0]["category"]["slug"] == "electronics"

    def test_price_range_and_sort(self, client, make_product):
        make_product(name="Cheap", price=10000)
        make_product(name="Middle", price=50000)
        make_product(name="Pricey", price=900000)

        response = client.get("/api/products", params={
            "min_price": 20000, "sort": "base_price", "order": "asc"
        })
        assert [p["name"] for p in response.json()["products"]] == ["Middle", "Pricey"]

    def test_pagination_counts_filtered_set(self, client, make_product):
        for i in range(5):
            make_product(name=f"Item {i}")

        data = client.get("/api/products", params={"page": 2, "limit": 2, "sort": "name", "order": "asc"}).json()
        assert data["total"] == 5
        assert data["pages"] == 3
        assert data["page"] == 2
        assert [p["name"] for p in data["products"]] == ["Item 2", "Item 3"]

    def test_unknown_sort_column_is_rejected(self, client):
        response = client.get("/api/products", params={"sort": "password_hash"})
        assert response.status_code == 400
        assert response.json()["error_type"] == "ValidationError"

    def test_featured_filter(self, client, make_product):
        make_product(name="Star", is_featured=True)
        make_product(name="Plain")

        data = client.get("/api/products", params={"featured": "true"}).json()
        assert [p["name"] for p in data["products"]] == ["Star"]


class TestProductDetail:
    def test_by_slug_with_variants_and_rating(self, client, session_factory, shirt, customer, other_customer):
        with session_factory() as db:
            db.add_all([
                Review(product_id=shirt.id, user_id=customer.id, rating=5, comment="Great"),
                Review(product_id=shirt.id, user_id=other_customer.id, rating=4),
            ])
            db.commit()

        response = client.get("/api/products/cotton-shirt")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == shirt.id
        assert {v["value"] for v in data["variants"]} == {"M", "XL"}
        assert len(data["reviews"]) == 2
        assert data["avg_rating"] == 4.5

        assert client.get(f"/api/products/{shirt.id}").json()["slug"] == "cotton-shirt"

    def test_missing_product(self, client):
        response = client.get("/api/products/no-such-thing")
        assert response.status_code == 404
        assert response.json() == {"error": "Product not found", "error_type": "NotFoundError"}


class TestCategories:
    def test_public_list(self, client, category):
        response = client.get("/api/categories")
        assert response.status_code == 200
        assert [c["slug"] for c in response.json()] == ["electronics"]

    def test_admin_crud(self, client, admin, make_product):
        created = client.post("/api/admin/categories", json={"name": "Home & Living"}, headers=admin.headers)
        assert created.status_code == 201
        category = created.json()
        assert category["slug"] == "home-living"

        product = make_product(name="Vase", category_id=category["id"])

        renamed = client.put(
            f"/api/admin/categories/{category['id']}", json={"name": "Home"}, headers=admin.headers
        )
        assert renamed.json()["slug"] == "home"

        deleted = client.delete(f"/api/admin/categories/{category['id']}", headers=admin.headers)
        assert deleted.status_code == 200
        assert client.get("/api/categories").json() == []
        assert client.get(f"/api/products/{product.id}").json()["category_id"] is None


class TestAdminProducts:
    def test_create_with_images_and_variants(self, client, admin, category):
        response = client.post("/api/admin/products", json={
            "name": "Running Shoe",
            "description": "Light trainer",
            "base_price": 750000,
            "category_id": category.id,
            "stock": 20,
            "images": ["https://img.test/1.jpg", "https://img.test/2.jpg"],
            "variants": [
                {"name": "Size", "value": "42", "stock": 10},
                {"name": "Size", "value": "43", "price_modifier": 5000, "stock": 10},
            ],
        }, headers=admin.headers)

        assert response.status_code == 201
        data = response.json()
        assert data["slug"] == "running-shoe"
        assert [img["is_primary"] for img in data["images"]] == [True, False]
        assert len(data["variants"]) == 2

    def test_duplicate_names_get_distinct_slugs(self, client, admin):
        first = client.post("/api/admin/products", json={"name": "Desk Lamp", "base_price": 1000},
                            headers=admin.headers).json()
        second = client.post("/api/admin/products", json={"name": "Desk Lamp", "base_price": 1000},
                             headers=admin.headers).json()
        assert first["slug"] == "desk-lamp"
        assert second["slug"] == "desk-lamp-2"

    def test_update_replaces_variants_and_keeps_other_fields(self, client, admin, shirt):
        response = client.put(f"/api/admin/products/{shirt.id}", json={
            "base_price": 175000,
            "variants": [{"name": "Size", "value": "S", "stock": 3}],
        }, headers=admin.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["base_price"] == 175000
        assert data["name"] == "Cotton Shirt"
        assert [v["value"] for v in data["variants"]] == ["S"]

    def test_delete_keeps_order_item_snapshot(self, client, admin, session_factory, product):
        with session_factory() as db:
            order = Order(order_number="TU-123456", subtotal=100000, shipping_fee=15000, total=115000,
                          guest_email="guest@mail.com", guest_name="Guest", guest_phone="1", guest_address="x")
            db.add(order)
            db.flush()
            db.add(OrderItem(order_id=order.id, product_id=product.id, product_name="Wireless Mouse",
                             price=100000, quantity=1, subtotal=100000))
            db.commit()

        response = client.delete(f"/api/admin/products/{product.id}", headers=admin.headers)
        assert response.status_code == 200
        assert client.get(f"/api/products/{product.id}").status_code == 404

        with session_factory() as db:
            item = db.query(OrderItem).one()
            assert item.product_id is None
            assert item.product_name == "Wireless Mouse"

    def test_requires_admin(self, client, customer):
        response = client.post("/api/admin/products", json={"name": "X", "base_price": 1},
                               headers=customer.headers)
        assert response.status_code == 403
