"""vaultfuzz — stateful property-based fuzzing of a yield-bearing vault."""

__version__ = "0.1.0"
