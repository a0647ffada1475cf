"""
Exceptions raised by joint detection.

Set-level problems (empty input, bad geometry, duplicate ids) abort a run
before any pair is evaluated. Numeric instability is per-pair and only
aborts the run in strict mode.
"""
from typing import Hashable, Optional


class DetectionError(Exception):
    """Base exception for joint detection errors."""
    pass


class EmptyInputError(DetectionError):
    """The component set has no components."""

    def __init__(self, message: str = "No components to process"):
        super().__init__(message)


class DegenerateGeometryError(DetectionError):
    """A component cannot take part in detection as defined."""

    def __init__(self, component_id: Optional[Hashable], reason: str):
        self.component_id = component_id
        self.reason = reason
        super().__init__(f"Component {component_id!r}: {reason}")


class DuplicateComponentError(DetectionError):
    """Two components in one set share an id."""

    def __init__(self, component_id: Hashable):
        self.component_id = component_id
        super().__init__(f"Duplicate component id {component_id!r}")


class NumericInstabilityError(DetectionError):
    """The plane-plane solve for a pair is ill-conditioned."""

    def __init__(self, first_id: Hashable, second_id: Hashable, detail: str):
        self.first_id = first_id
        self.second_id = second_id
        self.detail = detail
        super().__init__(
            f"Ill-conditioned intersection between {first_id!r} and "
            f"{second_id!r}: {detail}"
        )


class DetectionCancelledError(DetectionError):
    """The caller's cancellation signal was set; no joints were applied."""

    def __init__(self, pairs_evaluated: int, total_pairs: int):
        self.pairs_evaluated = pairs_evaluated
        self.total_pairs = total_pairs
        super().__init__(
            f"Detection cancelled after {pairs_evaluated}/{total_pairs} pairs"
        )
