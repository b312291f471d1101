"""idsync HTTP API."""
