"""Integrations with the document store and the realm cache."""
