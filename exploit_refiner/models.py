"""
Data model for refinement sessions
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Any, Set, Tuple, Union


class Severity(Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Severity":
        for member in cls:
            if value and member.value.lower() == str(value).strip().lower():
                return member
        return cls.MEDIUM


class StrategyTier(Enum):
    """
    Strictness tier for a generation request, chosen purely by attempt number.

    Transition table:

        attempt 1-2  -> STANDARD     fix the reported errors, keep the approach
        attempt 3-4  -> ALTERNATIVE  switch to an untried operation sequence
        attempt >= 5 -> MINIMAL      single-operation attempts only

    Tiers never go back down within a session.
    """
    STANDARD = "standard"
    ALTERNATIVE = "alternative"
    MINIMAL = "minimal"

    @classmethod
    def for_attempt(cls, attempt_number: int) -> "StrategyTier":
        for upper_bound, tier in _TIER_TABLE:
            if attempt_number <= upper_bound:
                return tier
        return cls.MINIMAL


# (highest attempt number, tier)
_TIER_TABLE: Tuple[Tuple[int, StrategyTier], ...] = (
    (2, StrategyTier.STANDARD),
    (4, StrategyTier.ALTERNATIVE),
)


class FailureKind(Enum):
    TECHNICAL_ERROR = "technical_error"
    ANALYSIS_ERROR = "analysis_error"
    # The test ran correctly and the contract's own checks stopped it
    CONTRACT_PROTECTION = "contract_protection"


class Outcome(Enum):
    EXPLOIT_CONFIRMED = "exploit_confirmed"
    CONTRACT_SECURE = "contract_secure"
    INCONCLUSIVE = "inconclusive"
    ERROR = "error"

    @property
    def confidence(self) -> str:
        return _OUTCOME_CONFIDENCE[self]


# Budget exhaustion carries less confidence than demonstrated resistance
_OUTCOME_CONFIDENCE = {
    Outcome.EXPLOIT_CONFIRMED: "confirmed",
    Outcome.CONTRACT_SECURE: "medium",
    Outcome.INCONCLUSIVE: "low",
    Outcome.ERROR: "none",
}


def extract_contract_name(source: str, default: str = "Contract") -> str:
    match = re.search(r'\bcontract\s+(\w+)', source or "")
    return match.group(1) if match else default


def slugify(value: str) -> str:
    slug = re.sub(r'[^A-Za-z0-9]+', '-', value or "").strip('-')
    return slug or "unknown"


@dataclass(frozen=True)
class Target:
    """A vulnerability hypothesis under test against one contract"""
    id: str
    vulnerability: str
    description: str
    severity: Severity
    contract_source: str
    contract_name: str = ""

    def __post_init__(self):
        if not self.contract_name:
            object.__setattr__(self, "contract_name", extract_contract_name(self.contract_source))

    @property
    def base_name(self) -> str:
        """Base for artifact file names"""
        return f"penetrationTest-{self.contract_name}-{slugify(self.vulnerability)}"

    @classmethod
    def from_request(
        cls,
        contract_source: str,
        vulnerability: str,
        description: str = "",
        severity: str = "Medium",
        target_id: Optional[str] = None
    ) -> "Target":
        """Create a target from an explicit user request"""
        contract_name = extract_contract_name(contract_source)
        return cls(
            id=target_id or f"{contract_name}-{slugify(vulnerability)}",
            vulnerability=vulnerability,
            description=description or vulnerability,
            severity=Severity.parse(severity),
            contract_source=contract_source,
            contract_name=contract_name
        )

    @classmethod
    def from_test_file(cls, test_path: Union[str, Path], contract_source: str) -> "Target":
        """Recover the vulnerability label of an existing penetration test"""
        path = Path(test_path)
        vulnerability = extract_vulnerability_from_filename(path.name)

        if vulnerability == "Unknown":
            content = path.read_text()
            describe_match = re.search(r'describe\(\s*["\'`]([^"\'`]*)', content)
            if describe_match:
                vulnerability = describe_match.group(1).strip() or vulnerability

        return cls.from_request(contract_source, vulnerability, target_id=path.stem)


def extract_vulnerability_from_filename(file_name: str) -> str:
    """penetrationTest-<Contract>-<Vulnerability>[-attemptN-<stamp>].ts -> Vulnerability"""
    match = re.match(r'penetrationTest-[^-]+-(.+?)(?:-attempt\d+-\d+)?\.(?:ts|js)$', file_name)
    if not match:
        return "Unknown"
    return match.group(1).replace('-', ' ').strip()


def targets_from_analysis(analysis: Dict[str, Any], contract_source: str) -> List[Target]:
    """
    Build targets from an analyzer result of the shape
    {"vulnerabilities": {"exploits": [{"name", "description", "severity"}, ...]}}
    """
    exploits = (analysis.get("vulnerabilities") or {}).get("exploits") or []
    contract_name = extract_contract_name(contract_source)

    targets = []
    for index, exploit in enumerate(exploits):
        name = exploit.get("name") or exploit.get("vulnerability_name") or f"Vulnerability {index + 1}"
        targets.append(Target(
            id=f"{contract_name}-{index + 1}-{slugify(name)}",
            vulnerability=name,
            description=exploit.get("description", name),
            severity=Severity.parse(exploit.get("severity")),
            contract_source=contract_source,
            contract_name=contract_name
        ))
    return targets


@dataclass(frozen=True)
class StrategyFingerprint:
    """Structural shape of an attempt"""
    operations: Tuple[str, ...]
    transfers_value: bool
    branching: str  # "none", "low" or "high"
    signature: str


@dataclass
class Attempt:
    """One generated test artifact within a session"""
    number: int
    content: str
    storage_id: str
    tier: StrategyTier
    path: Optional[Path] = None
    fingerprint: Optional[StrategyFingerprint] = None
    repeated_strategy: bool = False
    validation_warnings: List[str] = field(default_factory=list)
    repairs: Dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running one attempt in the harness"""
    success: bool
    output: str
    exit_code: Optional[int]
    elapsed_time: float
    timed_out: bool = False
    structured: bool = False  # decided by a machine-readable result line
    security_implication: str = ""


@dataclass(frozen=True)
class ContractOperation:
    """A callable entry point of the target contract"""
    name: str
    parameters: str = ""
    visibility: str = "public"
    state_mutability: str = ""

    @property
    def payable(self) -> bool:
        return self.state_mutability == "payable"

    def describe(self) -> str:
        suffix = " payable" if self.payable else ""
        return f"{self.name}({self.parameters}){suffix}"


@dataclass(frozen=True)
class Classification:
    is_secure: bool
    failure_kind: FailureKind
    explanation: str
    suggested_fix: str = ""
    valid_operations: Tuple[ContractOperation, ...] = ()
    source: str = "pattern"  # "pattern", "ai" or "fallback"

    @property
    def valid_operation_names(self) -> List[str]:
        return [op.name for op in self.valid_operations]


@dataclass(frozen=True)
class Ok:
    """Generation produced a usable attempt"""
    attempt: Attempt


@dataclass(frozen=True)
class Err:
    """Generation failed; the session must end in Error"""
    reason: str
    cause: Optional[BaseException] = None


GenerationResult = Union[Ok, Err]


@dataclass
class RefinementSession:
    """Per-target state passed explicitly between components"""
    target: Target
    max_cycles: int
    attempts: List[Attempt] = field(default_factory=list)
    fingerprints: Set[str] = field(default_factory=set)
    executions: List[ExecutionResult] = field(default_factory=list)
    classifications: List[Classification] = field(default_factory=list)
    cycles: int = 0
    outcome: Optional[Outcome] = None
    explanation: str = ""
    harness_context: str = ""
    run_dir: Optional[Path] = None

    @property
    def previous_attempt(self) -> Optional[Attempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def tried_sequences(self) -> List[Tuple[str, ...]]:
        """Distinct operation sequences already attempted, oldest first"""
        sequences = []
        for attempt in self.attempts:
            if attempt.fingerprint and attempt.fingerprint.operations not in sequences:
                sequences.append(attempt.fingerprint.operations)
        return sequences


@dataclass
class SessionResult:
    """The single terminal result a target yields"""
    target_id: str
    vulnerability: str
    outcome: Outcome
    explanation: str
    cycles: int = 0
    attempts: int = 0
    final_artifact: Optional[str] = None
    security_implication: str = ""
    error_message: Optional[str] = None
    execution_time: float = 0.0
    cause: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @property
    def confidence(self) -> str:
        return self.outcome.confidence

    @classmethod
    def from_error(cls, target: Target, error: BaseException, execution_time: float = 0.0) -> "SessionResult":
        return cls(
            target_id=target.id,
            vulnerability=target.vulnerability,
            outcome=Outcome.ERROR,
            explanation=f"Refinement aborted: {error}",
            error_message=str(error),
            execution_time=execution_time,
            cause=error
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "vulnerability": self.vulnerability,
            "outcome": self.outcome.value,
            "confidence": self.confidence,
            "explanation": self.explanation,
            "cycles": self.cycles,
            "attempts": self.attempts,
            "final_artifact": self.final_artifact,
            "security_implication": self.security_implication,
            "error_message": self.error_message,
            "execution_time": self.execution_time,
        }


@dataclass(frozen=True)
class ConcurrencyPolicy:
    """Session i starts after stagger_interval * i seconds"""
    stagger_interval: float = 0.5

    def delay_for(self, index: int) -> float:
        return self.stagger_interval * index


@dataclass
class ParallelRunResult:
    results: List[SessionResult]
    policy: ConcurrencyPolicy
    execution_time: float = 0.0

    def count(self, outcome: Outcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stagger_interval": self.policy.stagger_interval,
            "execution_time": self.execution_time,
            "results": [result.to_dict() for result in self.results],
        }
