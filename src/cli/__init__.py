"""Command-line tools for inspecting and upgrading datasets."""
