"""Clients for external collaborator services."""
