"""Canned bus scenarios."""
