"""State tests."""
