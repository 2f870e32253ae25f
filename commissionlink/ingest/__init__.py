"""Clients for the Shopify catalog and the commission backend."""
