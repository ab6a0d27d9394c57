"""
Test suite for the ItWhip alerting engine.

This module contains:
- Unit tests for rules, store, scheduler, notifiers, events and settings
- Integration tests for the alert manager workflows
- Simulated clock and recording notifier fixtures
"""

__version__ = "1.0.0"
