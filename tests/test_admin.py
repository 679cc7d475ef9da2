"""Tests for the admin dashboard, user management and health check."""
from storefront.models import Order


def seed_orders(session_factory, user_id):
    with session_factory() as db:
        for number, status, total in [
            ("BS-100001", "pending", 115000),
            ("BS-100002", "paid", 200000),
            ("BS-100003", "delivered", 300000),
            ("BS-100004", "cancelled", 999000),
        ]:
            db.add(Order(order_number=number, user_id=user_id, status=status,
                         subtotal=total, shipping_fee=0, total=total))
        db.commit()


class TestDashboard:
    def test_counts_and_revenue(self, client, session_factory, admin, customer, product, make_product):
        make_product(name="Retired", is_active=False)
        seed_orders(session_factory, customer.id)

        response = client.get("/api/admin/dashboard", headers=admin.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total_users"] == 2
        assert data["total_products"] == 1
        assert data["total_orders"] == 4
        assert data["pending_orders"] == 1
        assert data["total_revenue"] == 500000
        assert len(data["recent_orders"]) == 4

    def test_empty_store(self, client, admin):
        data = client.get("/api/admin/dashboard", headers=admin.headers).json()
        assert data["total_revenue"] == 0
        assert data["recent_orders"] == []

    def test_customers_are_forbidden(self, client, customer):
        response = client.get("/api/admin/dashboard", headers=customer.headers)
        assert response.status_code == 403
        assert response.json() == {"error": "Admin access required", "error_type": "ForbiddenError"}

    def test_anonymous_is_unauthenticated(self, client):
        assert client.get("/api/admin/dashboard").status_code == 401


class TestUserManagement:
    def test_list_users(self, client, admin, customer, other_customer):
        data = client.get("/api/admin/users", params={"limit": 2}, headers=admin.headers).json()
        assert data["total"] == 3
        assert data["pages"] == 2
        assert len(data["users"]) == 2
        assert all("password_hash" not in user for user in data["users"])

    def test_promote_customer(self, client, admin, customer):
        response = client.put(f"/api/admin/users/{customer.id}/role", json={"role": "admin"},
                              headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["role"] == "admin"

        # Role comes from the token, so the old token stays a customer token
        assert client.get("/api/admin/dashboard", headers=customer.headers).status_code == 403
        fresh = client.post("/api/auth/refresh", headers=customer.headers).json()["token"]
        assert client.get("/api/admin/dashboard",
                          headers={"Authorization": f"Bearer {fresh}"}).status_code == 200

    def test_invalid_role(self, client, admin, customer):
        response = client.put(f"/api/admin/users/{customer.id}/role", json={"role": "superuser"},
                              headers=admin.headers)
        assert response.status_code == 422

    def test_unknown_user(self, client, admin):
        response = client.put("/api/admin/users/missing/role", json={"role": "admin"}, headers=admin.headers)
        assert response.status_code == 404


class TestHealth:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "version": "1.0.0"}

    def test_unknown_route(self, client):
        assert client.get("/api/nowhere").status_code == 404
