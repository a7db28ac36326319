"""Cadence - adaptive task prioritization and experimentation engine."""

__version__ = "0.3.0"
