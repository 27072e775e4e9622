"""Creative Rotator - automated creative A/B rotation for marketplace ad campaigns."""

__version__ = "0.1.0"
