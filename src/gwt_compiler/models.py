"""Core data models for gwt-compiler."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class StepKind(Enum):
    """The keyword a step is introduced with."""

    GIVEN = "GIVEN"
    WHEN = "WHEN"
    THEN = "THEN"


# Steps never go back to a lower rank: GIVEN* WHEN+ THEN+
KIND_ORDER: dict[StepKind, int] = {
    StepKind.GIVEN: 0,
    StepKind.WHEN: 1,
    StepKind.THEN: 2,
}

PARAMETER_TYPES = ("string", "number", "boolean")


@dataclass(frozen=True)
class Parameter:
    """A typed literal extracted from a statement or bound by a template."""

    name: str
    value: str | int | float | bool
    type_name: str  # "string", "number", "boolean"

    def __post_init__(self) -> None:
        if self.type_name not in PARAMETER_TYPES:
            raise ValueError(f"Invalid parameter type: {self.type_name}")

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "type": self.type_name, "value": self.value}


@dataclass(frozen=True)
class Step:
    """A single GIVEN, WHEN, or THEN statement."""

    kind: StepKind
    text: str
    parameters: tuple[Parameter, ...] = ()
    line_number: int = field(default=0, compare=False)


@dataclass(frozen=True)
class Scenario:
    """An ordered GIVEN* WHEN+ THEN+ sequence of steps."""

    steps: tuple[Step, ...]
    title: str = ""
    line_number: int = field(default=0, compare=False)

    @property
    def givens(self) -> list[Step]:
        return [s for s in self.steps if s.kind is StepKind.GIVEN]

    @property
    def whens(self) -> list[Step]:
        return [s for s in self.steps if s.kind is StepKind.WHEN]

    @property
    def thens(self) -> list[Step]:
        return [s for s in self.steps if s.kind is StepKind.THEN]


@dataclass(frozen=True)
class SpecFile:
    """A parsed spec file: optional description and one or more scenarios."""

    path: str
    scenarios: tuple[Scenario, ...]
    description: str = ""


# ── Resolution ──────────────────────────────────────────────────────


class UnresolvedReason(Enum):
    PENDING = "pending"
    NO_MATCH = "no-match"
    TYPE_MISMATCH = "type-mismatch"


class Comparison(Enum):
    """How a THEN operation's result is checked against its expected value."""

    EQ = "eq"
    NE = "ne"
    CONTAINS = "contains"
    TRUTHY = "truthy"
    FALSY = "falsy"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"

    @property
    def takes_expected(self) -> bool:
        return self not in (Comparison.TRUTHY, Comparison.FALSY)


@dataclass(frozen=True)
class Resolved:
    """A statement bound to exactly one domain operation."""

    operation_id: str
    bound_args: tuple[Parameter, ...] = ()
    expected: Parameter | None = None
    comparison: Comparison = Comparison.EQ
    pass_result: bool = False


@dataclass(frozen=True)
class Unresolved:
    """No template binds the statement (or resolution has not run yet)."""

    reason: UnresolvedReason = UnresolvedReason.PENDING
    detail: str = ""
    candidates: tuple[str, ...] = ()


@dataclass(frozen=True)
class Ambiguous:
    """More than one template matches; no guess is made."""

    candidates: tuple[str, ...]
    patterns: tuple[str, ...] = ()  # parallel to candidates


ResolutionStatus = Resolved | Unresolved | Ambiguous


# ── IR ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IRStep:
    kind: StepKind
    statement: str
    parameters: tuple[Parameter, ...] = ()
    resolution: ResolutionStatus = field(default_factory=Unresolved)
    line_number: int = field(default=0, compare=False)

    @property
    def is_resolved(self) -> bool:
        return isinstance(self.resolution, Resolved)


@dataclass(frozen=True)
class IRScenario:
    scenario_id: str
    steps: tuple[IRStep, ...]
    title: str = ""
    line_number: int = field(default=0, compare=False)

    @property
    def is_resolved(self) -> bool:
        return all(step.is_resolved for step in self.steps)


@dataclass(frozen=True)
class IRDocument:
    """One per SpecFile; structurally comparable and JSON serializable."""

    spec_file: str
    scenarios: tuple[IRScenario, ...]
    description: str = ""

    @property
    def is_resolved(self) -> bool:
        return all(s.is_resolved for s in self.scenarios)


# ── Configuration ───────────────────────────────────────────────────


@dataclass
class ProjectConfig:
    """Project configuration for gwt-compiler."""

    version: str = "0.1.0"
    framework: str = "pytest"
    specs_dir: str = "specs"
    registry: str = "specs/operations.yaml"
    ir_dir: str = ".gwt/ir"
    output_dir: str = ".gwt/generated"
    timeout: int = 300
    workers: int = 1
