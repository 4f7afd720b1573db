"""Shared helpers used across Weir layers."""
