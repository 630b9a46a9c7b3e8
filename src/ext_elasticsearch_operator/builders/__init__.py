"""Builders deriving desired state from custom resources."""
