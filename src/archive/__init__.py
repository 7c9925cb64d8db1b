"""Storage backends.

This package defines the archive contract, the name-keyed factory
that selects a backend, and the content-addressed binary archive.
"""
