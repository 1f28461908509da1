"""conductor - delegation, patch matching and loop detection for coding agents."""

__version__ = "0.1.0"
