"""Job mutual-exclusion layer.

This package keeps two instances of the same job from running at once
using a create-if-absent marker on a shared medium.
"""
