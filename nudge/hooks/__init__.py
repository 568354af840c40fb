"""Nudge lifecycle hooks for the host agent runtime."""
