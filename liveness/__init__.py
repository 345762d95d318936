"""
Liveness engine: turns per-frame face landmarks into a pass/fail liveness decision
"""
from .config import LivenessConfig
from .exceptions import SessionStateError
from .services.challenge_sequencer import ChallengeSequencer

__version__ = "1.0.0"

__all__ = ['ChallengeSequencer', 'LivenessConfig', 'SessionStateError']
