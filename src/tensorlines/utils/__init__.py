"""
Utilities Module

Logging and run provenance.
"""

from .logger import get_logger, log_decision

__all__ = ['get_logger', 'log_decision']
