"""Tenant directory: built-in sites plus admin-created branches."""
