"""District Data Console — hierarchical allocation of district consumer data."""

__version__ = "1.0.0"
