"""Declarative convergence of AWS resources to their desired state."""

__version__ = "0.1.0"
