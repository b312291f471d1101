"""idsync business services."""
