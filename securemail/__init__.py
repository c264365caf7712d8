"""Core of a PGP mail client: provider sessions and hardware token keys."""

__version__ = "0.1.0"
