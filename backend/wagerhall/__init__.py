"""Wagerhall: token wager escrow and protocol fee distribution."""

__version__ = "0.1.0"
__author__ = "Wagerhall Team"

__all__ = ["__version__", "__author__"]
