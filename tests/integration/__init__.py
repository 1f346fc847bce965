"""Integration tests that open real SQLite files through the shared connection factory."""
