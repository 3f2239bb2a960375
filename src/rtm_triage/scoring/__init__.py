"""
Risk scoring module for RTM-Triage.

Signal extraction with graceful degradation and the pure composite
risk scorer.
"""

from rtm_triage.scoring.risk import RiskScorer, risk_level
from rtm_triage.scoring.signals import SignalExtractor

__all__ = ["RiskScorer", "SignalExtractor", "risk_level"]
