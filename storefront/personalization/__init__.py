"""Personalization module for the storefront.

This module records implicit browsing signals per visitor and ranks the
product catalog into the "for you", "continue shopping", "similar" and
"complementary" feeds.
"""
