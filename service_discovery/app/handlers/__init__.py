"""Capability handlers, one per discovery intent."""
