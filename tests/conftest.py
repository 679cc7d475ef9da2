"""Pytest fixtures for storefront tests."""
import hashlib
import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.auth import create_access_token, hash_password
from storefront.config import Settings
from storefront.dependencies import get_http_client
from storefront.main import create_app
from storefront.models import Address, Category, Product, ProductVariant, Role, User

SERVER_KEY = "SB-Mid-server-test-key"


class FakeUpstream:
    """
    Stand-in for the payment processor and Google, behind httpx.MockTransport.

    Tests change ``snap_status``/``snap_body`` or set ``snap_error`` to make
    the processor misbehave. Every request is recorded in ``calls``.
    """

    def __init__(self):
        self.calls = []
        self.snap_status = 201
        self.snap_body = {
            "token": "snap-token-1",
            "redirect_url": "https://app.sandbox.midtrans.com/snap/v2/vtweb/snap-token-1",
        }
        self.snap_error = None
        self.google_profile = {
            "id": "google-123",
            "email": "gina@mail.com",
            "name": "Gina Google",
            "picture": "https://example.com/gina.png",
        }
        self.google_token_status = 200

    @property
    def snap_calls(self):
        return [request for request in self.calls if "midtrans" in request.url.host]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        host = request.url.host

        if "midtrans" in host:
            if self.snap_error is not None:
                raise self.snap_error
            if isinstance(self.snap_body, str):
                return httpx.Response(self.snap_status, text=self.snap_body)
            return httpx.Response(self.snap_status, json=self.snap_body)

        if host == "oauth2.googleapis.com":
            if self.google_token_status != 200:
                return httpx.Response(self.google_token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "google-access", "token_type": "Bearer"})

        if host == "www.googleapis.com":
            return httpx.Response(200, json=self.google_profile)

        return httpx.Response(404, json={"error": "unexpected request"})


def sign_notification(order_id, status_code, gross_amount, server_key=SERVER_KEY):
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


def snap_payload(request: httpx.Request) -> dict:
    return json.loads(request.content)


@pytest.fixture
def base_settings():
    """Settings for an isolated in-memory store with telemetry off."""
    return Settings(
        env="test",
        log_level="WARNING",
        database_url="sqlite://",
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        midtrans_server_key=SERVER_KEY,
        midtrans_client_key="SB-Mid-client-test-key",
        frontend_url="http://shop.test",
        otel_enabled=False,
        pyroscope_enabled=False,
        rate_limit_enabled=False,
        seed_demo_data=False,
    )


@pytest.fixture
def settings(base_settings):
    return base_settings


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def app(settings, upstream):
    app = create_app(settings)
    mock_client = httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))
    app.dependency_overrides[get_http_client] = lambda: mock_client
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def session_factory(app, client):
    """Session factory of the running app; open one session per check."""
    return app.state.session_factory


def make_user(session_factory, settings, email, name="Test User", role=Role.CUSTOMER.value, password="secret123"):
    with session_factory() as db:
        user = User(
            email=email,
            name=name,
            password_hash=hash_password(password, rounds=4) if password else None,
            role=role,
        )
        db.add(user)
        db.commit()
        token = create_access_token(user, settings)
        return SimpleNamespace(
            id=user.id,
            email=email,
            name=name,
            token=token,
            headers={"Authorization": f"Bearer {token}"},
        )


@pytest.fixture
def customer(session_factory, settings):
    return make_user(session_factory, settings, "budi@mail.com", name="Budi Santoso")


@pytest.fixture
def other_customer(session_factory, settings):
    return make_user(session_factory, settings, "sari@mail.com", name="Sari Dewi")


@pytest.fixture
def admin(session_factory, settings):
    return make_user(session_factory, settings, "admin@mail.com", name="Store Admin", role=Role.ADMIN.value)


@pytest.fixture
def address(session_factory, customer):
    with session_factory() as db:
        address = Address(
            user_id=customer.id,
            label="Home",
            name="Budi Santoso",
            phone="08123456789",
            street="Jl. Merdeka 1",
            city="Jakarta",
            state="DKI Jakarta",
            postal_code="10110",
            is_default=True,
        )
        db.add(address)
        db.commit()
        return address


@pytest.fixture
def category(session_factory):
    with session_factory() as db:
        category = Category(name="Electronics", slug="electronics", icon="laptop")
        db.add(category)
        db.commit()
        return category


@pytest.fixture
def make_product(session_factory):
    def _make(name="Wireless Mouse", slug=None, price=100000.0, stock=10, category_id=None,
              is_active=True, is_featured=False, description=""):
        with session_factory() as db:
            product = Product(
                name=name,
                slug=slug or name.lower().replace(" ", "-"),
                base_price=price,
                stock=stock,
                category_id=category_id,
                is_active=is_active,
                is_featured=is_featured,
                description=description,
            )
            db.add(product)
            db.commit()
            return product
    return _make


@pytest.fixture
def product(make_product, category):
    return make_product(name="Wireless Mouse", price=100000.0, stock=10, category_id=category.id)


@pytest.fixture
def shirt(session_factory, make_product):
    """A product with two size variants, 5 of each."""
    shirt = make_product(name="Cotton Shirt", price=150000.0, stock=10)
    with session_factory() as db:
        medium = ProductVariant(product_id=shirt.id, name="Size", value="M", price_modifier=0.0, stock=5)
        large = ProductVariant(product_id=shirt.id, name="Size", value="XL", price_modifier=10000.0, stock=5)
        db.add_all([medium, large])
        db.commit()
        return SimpleNamespace(id=shirt.id, medium=medium, large=large)


def get_stock(session_factory, product_id):
    with session_factory() as db:
        return db.get(Product, product_id).stock


def get_variant_stock(session_factory, variant_id):
    with session_factory() as db:
        return db.get(ProductVariant, variant_id).stock
