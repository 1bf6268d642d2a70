"""Hybrid recommendation and A/B experimentation engine"""

__version__ = "1.0.0"
