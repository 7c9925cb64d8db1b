"""In-memory metadata model.

This package holds the meta-info store, field registry and savepoint
registry that the serializer validates every read and write against.
"""
