"""Rewrites of whole project documents (no statistics involved)."""
