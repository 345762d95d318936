"""
Liveness engine services
"""
from .baseline_calibrator import BaselineCalibrator
from .challenge_engine import ChallengeEngine
from .challenge_sequencer import ChallengeSequencer, Session
from .challenges import BlinkChallenge, Challenge, SmileChallenge, TurnChallenge, build_challenge
from .face_geometry import FaceGeometryValidator
from .metric_extractor import ExtractorFault, extract_metrics
from .scoring_engine import ScoringEngine, passes_acceptance

__all__ = [
    'BaselineCalibrator',
    'BlinkChallenge',
    'Challenge',
    'ChallengeEngine',
    'ChallengeSequencer',
    'ExtractorFault',
    'FaceGeometryValidator',
    'ScoringEngine',
    'Session',
    'SmileChallenge',
    'TurnChallenge',
    'build_challenge',
    'extract_metrics',
    'passes_acceptance',
]
