"""Core building blocks.

This package holds configuration, errors, logging, the element type
set and format versioning shared by every other package.
"""
