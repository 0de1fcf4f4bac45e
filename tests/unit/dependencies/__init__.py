"""Dependencies tests."""
