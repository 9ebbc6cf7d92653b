"""Capstone Portal: application, partnership and capacity workflow engine."""

__version__ = "0.1.0"
