"""Presence tracking for connected chat clients."""
