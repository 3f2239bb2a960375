"""
Core components for RTM-Triage.

This module provides the foundational components of the triage engine,
including configuration management, data models and the engine facade.
"""

from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.core.engine import TriageEngine

__all__ = [
    "ConfigManager",
    "TriageEngine",
]
