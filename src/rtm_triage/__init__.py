"""
RTM-Triage: Clinical alert risk scoring and triage prioritization

Scores triggered remote-monitoring alerts from recent observations and
medication adherence, tracks their response deadlines, keeps each
organization's queue in a dense priority order and guards clinician
actions with an atomic claim protocol.
"""

__version__ = "0.1.0"
__author__ = "RTM-Triage Team"

from rtm_triage.core.config.manager import ConfigManager
from rtm_triage.core.engine import TriageEngine

__all__ = [
    "TriageEngine",
    "ConfigManager",
]
