"""
Challenge Engine for generating randomized challenge orders
"""
import random
import secrets
import time
from typing import Iterable, Optional, Tuple

from ..models.data_models import ChallengeKind, ChallengeSequence


class ChallengeEngine:
    """
    Draws the challenge order for a session.

    The order is a pure function of the seed: the same seed, kinds and count
    always produce the same sequence, so tests can replay a session. When no
    seed is supplied one is drawn from ``secrets`` and recorded on the
    sequence.
    """

    CHALLENGE_POOL: Tuple[ChallengeKind, ...] = (
        ChallengeKind.BLINK,
        ChallengeKind.SMILE,
        ChallengeKind.TURN_LEFT,
        ChallengeKind.TURN_RIGHT,
    )

    def generate_nonce(self) -> str:
        """
        Generate a nonce identifying one challenge sequence.

        Returns:
            str: A 32-character hexadecimal nonce
        """
        return secrets.token_hex(16)  # 16 bytes = 32 hex characters

    def generate_seed(self) -> int:
        return secrets.randbits(64)

    def generate_challenge_sequence(
        self,
        session_id: str,
        kinds: Optional[Iterable[ChallengeKind]] = None,
        num_challenges: Optional[int] = None,
        seed: Optional[int] = None
    ) -> ChallengeSequence:
        """
        Draw a uniformly random permutation (or subset) of challenge kinds.

        Args:
            session_id: Unique identifier for the session
            kinds: Challenge kinds to draw from (default: the full pool)
            num_challenges: How many to draw (default: all of them)
            seed: Seed for the order; drawn at random when omitted

        Returns:
            ChallengeSequence: Immutable sequence with nonce, seed and timestamp
        """
        pool = tuple(dict.fromkeys(kinds)) if kinds is not None else self.CHALLENGE_POOL
        if not pool:
            raise ValueError("At least one challenge kind is required")

        count = len(pool) if num_challenges is None else num_challenges
        if not 1 <= count <= len(pool):
            raise ValueError(f"num_challenges must be between 1 and {len(pool)}, got {count}")

        if seed is None:
            seed = self.generate_seed()

        # random.sample leaves the pool untouched
        order = tuple(random.Random(seed).sample(pool, count))

        return ChallengeSequence(
            session_id=session_id,
            nonce=self.generate_nonce(),
            seed=seed,
            timestamp=time.time(),
            challenges=order,
        )
