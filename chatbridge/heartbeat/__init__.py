"""Liveness ping."""
