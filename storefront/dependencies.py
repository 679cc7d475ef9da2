"""Dependency injection for services."""
import httpx
from fastapi import Depends, Request

from storefront.config import Settings
from storefront.services.account_service import AccountService
from storefront.services.admin_service import AdminService
from storefront.services.cart_service import CartService
from storefront.services.catalog_service import CatalogService
from storefront.services.identity_provider import GoogleOAuthClient
from storefront.services.order_service import OrderService
from storefront.services.payment_gateway import PaymentGatewayClient
from storefront.services.payment_service import PaymentService


def get_settings(request: Request) -> Settings:
    """Get settings from app state."""
    return request.app.state.settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_cart_service() -> CartService:
    return CartService()


def get_account_service(settings: Settings = Depends(get_settings)) -> AccountService:
    return AccountService(settings)


def get_admin_service() -> AdminService:
    return AdminService()


def get_order_service(
    settings: Settings = Depends(get_settings),
    cart_service: CartService = Depends(get_cart_service)
) -> OrderService:
    """Get order service instance."""
    return OrderService(settings, cart_service)


def get_payment_gateway(
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> PaymentGatewayClient:
    """Get payment processor client."""
    return PaymentGatewayClient(http_client, settings)


def get_payment_service(
    settings: Settings = Depends(get_settings),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    order_service: OrderService = Depends(get_order_service)
) -> PaymentService:
    """Get payment service instance."""
    return PaymentService(settings, gateway, order_service)


def get_google_client(
    settings: Settings = Depends(get_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client)
) -> GoogleOAuthClient:
    return GoogleOAuthClient(http_client, settings)
