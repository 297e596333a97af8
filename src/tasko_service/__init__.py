"""Tasko Service - local task marketplace with escrow-gated task lifecycle."""

__version__ = "0.1.0"
