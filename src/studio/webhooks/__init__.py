"""Vendor callback handling."""
