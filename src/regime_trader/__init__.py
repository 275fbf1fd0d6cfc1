"""Regime-aware signal and position-lifecycle engine."""

__version__ = "0.1.0"
