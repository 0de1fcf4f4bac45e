"""Unit and integration tests for wark."""
