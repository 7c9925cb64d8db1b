"""Serializer orchestration.

This package ties metadata validation to a storage backend and owns
the metadata file lifecycle, including the legacy schema upgrade.
"""
