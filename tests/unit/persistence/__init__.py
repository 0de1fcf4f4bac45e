"""Persistence tests."""
