"""
Shared utilities for the ItWhip alerting engine.

This module provides common functionality used across the engine:
- Structured logging with categories and correlation ids
- Performance logging
"""

__version__ = "1.0.0"
