"""FastAPI application module for the storefront.

This module contains the FastAPI application, route handlers and the
dependency wiring that exposes recommendation feeds, signal recording and
experiment assignment to the presentation layer.
"""
