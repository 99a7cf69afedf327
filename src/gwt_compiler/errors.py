"""Error taxonomy for the spec-to-test pipeline.

Each stage raises its own error type so the pipeline can scope a failure to
the smallest unit (one spec file, one scenario) and keep going.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every pipeline-stage error."""

    stage = "pipeline"


class SpecSyntaxError(PipelineError):
    """Raised when spec text does not follow the GWT grammar."""

    stage = "parse"

    def __init__(
        self,
        message: str,
        line_number: int,
        token: str = "",
        source_file: str | None = None,
    ) -> None:
        self.message = message
        self.line_number = line_number
        self.token = token
        self.source_file = source_file
        location = f"{source_file or '<string>'}:{line_number}"
        near = f" (near {token!r})" if token else ""
        super().__init__(f"{location}: {message}{near}")


class StructuralError(PipelineError):
    """Raised when IR lowering meets input a valid SpecFile cannot produce."""

    stage = "ir"


class RegistryError(PipelineError):
    """Raised when the operation template registry is malformed."""

    stage = "registry"


class UnresolvedOperationError(PipelineError):
    """A statement in a scenario has no template binding."""

    stage = "resolve"

    def __init__(
        self,
        source_file: str,
        scenario_id: str,
        statement: str,
        reason: str,
        detail: str = "",
        line_number: int = 0,
    ) -> None:
        self.source_file = source_file
        self.scenario_id = scenario_id
        self.statement = statement
        self.reason = reason
        self.detail = detail
        self.line_number = line_number
        message = f"{source_file}:{line_number}: unresolved ({reason}): {statement}"
        if detail:
            message += f". {detail}"
        super().__init__(message)


class AmbiguousOperationError(PipelineError):
    """A statement in a scenario matches more than one template."""

    stage = "resolve"

    def __init__(
        self,
        source_file: str,
        scenario_id: str,
        statement: str,
        candidates: tuple[str, ...],
        line_number: int = 0,
        patterns: tuple[str, ...] = (),
    ) -> None:
        self.source_file = source_file
        self.scenario_id = scenario_id
        self.statement = statement
        self.candidates = candidates
        self.patterns = patterns
        self.line_number = line_number
        listed = list(candidates)
        if patterns:
            listed = [f"{op} ('{pattern}')" for op, pattern in zip(candidates, patterns)]
        super().__init__(
            f"{source_file}:{line_number}: ambiguous: {statement} "
            f"Candidates: {', '.join(listed)}"
        )


class EmissionError(PipelineError):
    """Raised when the emitter is handed a step that is not resolved."""

    stage = "emit"


class TestExecutionFailure(PipelineError):
    """A failing generated test. Carried in reports, not raised by the pipeline."""

    __test__ = False
    stage = "test"

    def __init__(
        self,
        test_name: str,
        message: str,
        source_file: str = "",
        scenario_id: str = "",
        statement: str = "",
    ) -> None:
        self.test_name = test_name
        self.message = message
        self.source_file = source_file
        self.scenario_id = scenario_id
        self.statement = statement
        where = f"{source_file}: " if source_file else ""
        what = f"{statement} " if statement else ""
        super().__init__(f"{where}{what}[{test_name}] {message}".strip())
