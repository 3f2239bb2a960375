"""
Configuration management module for RTM-Triage.

This module provides configuration loading, environment overrides and
validation of the engine's tunable policies.
"""

from rtm_triage.core.config.manager import ConfigManager

__all__ = ["ConfigManager"]
