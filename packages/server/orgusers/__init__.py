"""Org users API server."""
