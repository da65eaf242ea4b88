"""Raksha safety check-in service."""
