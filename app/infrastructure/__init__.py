"""Kuzu-backed repositories."""
