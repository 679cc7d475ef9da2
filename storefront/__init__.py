"""Storefront backend service."""
