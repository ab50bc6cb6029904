"""Storage and versioning layer.

This package persists immutable per-dataset job state versions and the
aliases that mark the current version of each dataset.
"""
