"""Destination writers (content repository, transactional store, identity provider)."""
