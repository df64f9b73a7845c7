"""HTTP API for batch operations."""
