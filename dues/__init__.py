"""Membership dues billing core."""

__version__ = '0.1.0'
