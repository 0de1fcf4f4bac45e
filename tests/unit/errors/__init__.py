"""Errors tests."""
