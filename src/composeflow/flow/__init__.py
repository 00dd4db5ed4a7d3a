"""Flows built on the compose engine."""
