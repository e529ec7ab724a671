"""ARCANE — terminal chat and coding agent."""
__version__ = "1.0.0"
