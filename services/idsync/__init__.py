"""idsync: service-account provisioning and identity-provider link reconciliation."""

__version__ = "0.1.0"
