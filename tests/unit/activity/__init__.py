"""Activity tests."""
