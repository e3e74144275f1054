"""Data acquisition back ends (HTTP channel retrieval)."""
