"""forgeline: lifecycle runtime for infrastructure resource providers."""

__version__ = "0.1.0"
