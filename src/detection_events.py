"""
Events describing a detection run, in pair-processing order.

A run records its events into an immutable EventLog. Front ends that
animate progress replay the log as often as they like; nothing is emitted
live and no callbacks are attached to the engine.
"""
from dataclasses import dataclass, fields
from enum import Enum
from typing import (
    TYPE_CHECKING, Any, ClassVar, Dict, Iterable, Iterator, List, Optional,
    Sequence, Tuple, Type, TypeVar, Union, overload,
)

from components import ComponentId, JointType, Segment
from geometry_predicates import Line

if TYPE_CHECKING:
    from detection_results import RunSummary

E = TypeVar("E", bound="DetectionEvent")


def _plain(value: Any) -> Any:
    """Convert event payload values to plain dict/list/scalar data."""
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass(frozen=True)
class DetectionEvent:
    kind: ClassVar[str] = "event"

    def to_dict(self) -> Dict[str, Any]:
        payload = {"event": self.kind}
        for f in fields(self):
            payload[f.name] = _plain(getattr(self, f.name))
        return payload


@dataclass(frozen=True)
class DetectionStarted(DetectionEvent):
    kind: ClassVar[str] = "detection_started"
    component_count: int
    total_pairs: int


@dataclass(frozen=True)
class PairStarted(DetectionEvent):
    kind: ClassVar[str] = "pair_started"
    step: int
    total_pairs: int
    first_id: ComponentId
    second_id: ComponentId


@dataclass(frozen=True)
class CoplanarPairFound(DetectionEvent):
    """Coplanar and overlapping: a merge candidate, not classified."""
    kind: ClassVar[str] = "coplanar_pair_found"
    first_id: ComponentId
    second_id: ComponentId


@dataclass(frozen=True)
class IntersectionFound(DetectionEvent):
    kind: ClassVar[str] = "intersection_found"
    first_id: ComponentId
    second_id: ComponentId
    line: Line


@dataclass(frozen=True)
class JointClassified(DetectionEvent):
    """A matched joint pair; segments are in each owner's local frame."""
    kind: ClassVar[str] = "joint_classified"
    first_id: ComponentId
    first_type: JointType
    first_segment: Segment
    second_id: ComponentId
    second_type: JointType
    second_segment: Segment


@dataclass(frozen=True)
class PairSkipped(DetectionEvent):
    """Warning: the pair could not be evaluated and was left out."""
    kind: ClassVar[str] = "warning"
    first_id: ComponentId
    second_id: ComponentId
    reason: str


@dataclass(frozen=True)
class PairCompleted(DetectionEvent):
    kind: ClassVar[str] = "pair_completed"
    step: int
    first_id: ComponentId
    second_id: ComponentId
    relation: str


@dataclass(frozen=True)
class DetectionComplete(DetectionEvent):
    kind: ClassVar[str] = "complete"
    summary: "RunSummary"


class EventLog(Sequence[DetectionEvent]):
    """Immutable, replayable record of one run's events."""

    def __init__(self, events: Iterable[DetectionEvent] = ()):
        self._events: Tuple[DetectionEvent, ...] = tuple(events)

    @overload
    def __getitem__(self, index: int) -> DetectionEvent: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[DetectionEvent, ...]: ...

    def __getitem__(self, index: Union[int, slice]):
        return self._events[index]

    def __len__(self) -> int:
        return len(self._events)

    def replay(
        self,
        kinds: Optional[Sequence[Type[DetectionEvent]]] = None,
    ) -> Iterator[DetectionEvent]:
        """Yield the recorded events again, optionally filtered by type."""
        for event in self._events:
            if kinds is None or isinstance(event, tuple(kinds)):
                yield event

    def of_type(self, kind: Type[E]) -> List[E]:
        return [e for e in self._events if isinstance(e, kind)]

    def warnings(self) -> List[PairSkipped]:
        return self.of_type(PairSkipped)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._events]

    def __repr__(self) -> str:
        return f"EventLog({len(self._events)} events)"
