"""Claims tests."""
