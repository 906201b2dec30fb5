"""Bookstore cart, order and claim-code fulfillment service."""
