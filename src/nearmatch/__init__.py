"""NearMatch: proximity visibility and matching engine."""

__version__ = "0.1.0"
