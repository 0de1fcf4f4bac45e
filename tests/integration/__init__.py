"""Multi-component tests over a real SQLite state database."""
