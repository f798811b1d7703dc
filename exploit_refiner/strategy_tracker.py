"""
Strategy Tracker - recognizes attempts that repeat an earlier approach
"""

import hashlib
import json
import logging
import re

from .models import Attempt, RefinementSession, StrategyFingerprint
from .tools.invoked_operations import clean_test_code, extract_invoked_operations


VALUE_TRANSFER_PATTERN = re.compile(r'\bvalue\s*:|\bsendTransaction\s*\(')
BRANCH_PATTERN = re.compile(r'\b(?:if|for|while|switch|catch)\b\s*\(|\?[^?:.;]+:')


class StrategyTracker:
    """
    Computes structural fingerprints and records them on the session.

    Two attempts share a fingerprint when they invoke the same ordered
    operations, agree on whether value is transferred, and fall in the same
    branching bucket; variable names, literals and comments do not matter.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def fingerprint(self, attempt: Attempt) -> StrategyFingerprint:
        cleaned = clean_test_code(attempt.content)

        operations = tuple(extract_invoked_operations(attempt.content))
        transfers_value = bool(VALUE_TRANSFER_PATTERN.search(cleaned))
        branching = self._branching_bucket(len(BRANCH_PATTERN.findall(cleaned)))

        canonical = json.dumps(
            {"operations": operations, "value": transfers_value, "branching": branching},
            sort_keys=True
        )
        signature = hashlib.sha256(canonical.encode()).hexdigest()[:16]

        return StrategyFingerprint(
            operations=operations,
            transfers_value=transfers_value,
            branching=branching,
            signature=signature
        )

    def is_novel(self, session: RefinementSession, signature: str) -> bool:
        return signature not in session.fingerprints

    def record(self, session: RefinementSession, attempt: Attempt) -> bool:
        """
        Fingerprint the attempt, flag it if it repeats an earlier strategy and
        add it to the session's set. Returns True for a novel strategy.
        """
        if attempt.fingerprint is None:
            attempt.fingerprint = self.fingerprint(attempt)

        novel = self.is_novel(session, attempt.fingerprint.signature)
        attempt.repeated_strategy = not novel
        session.fingerprints.add(attempt.fingerprint.signature)

        if novel:
            self.logger.info(
                f"🧭 Attempt {attempt.number} strategy {attempt.fingerprint.signature}: "
                f"{' → '.join(attempt.fingerprint.operations) or '(no operations)'}"
            )
        else:
            self.logger.warning(
                f"🔁 Attempt {attempt.number} repeats an earlier strategy ({attempt.fingerprint.signature})"
            )
        return novel

    def _branching_bucket(self, branches: int) -> str:
        if branches == 0:
            return "none"
        if branches <= 2:
            return "low"
        return "high"
