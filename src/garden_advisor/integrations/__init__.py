"""Adapters for weather and photo sources."""
