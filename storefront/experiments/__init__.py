"""A/B testing module for the storefront.

This module assigns visitors to experiment variants exactly once, records
impressions and conversions in the background, and tallies outcomes for
the back-office.
"""
