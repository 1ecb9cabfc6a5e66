"""Build-event recorder for device contexts.

Each :class:`~clkit.context.DeviceContext` owns a :class:`TimeLogger`. The
compilation cache reports every program build as a ``build:<program_id>``
start/stop pair and every created kernel as a progress event, so the logger
doubles as a record of how often, and how long, a context compiled.
"""

import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

import attrs

VERBOSITY_LEVELS = (None, "default", "verbose", "debug")
EVENT_TYPES = ("start", "stop", "progress")


@attrs.define(frozen=True)
class TimingEvent:
    """One recorded event.

    Attributes
    ----------
    name : str
        Event identifier, e.g. ``'build:axpy<T=float>'``.
    event_type : str
        ``'start'``, ``'stop'`` or ``'progress'``.
    timestamp : float
        Value of :func:`time.perf_counter` when the event was recorded.
    metadata : dict
        Free-form details such as ``category`` or ``status``.
    """

    name: str = attrs.field(validator=attrs.validators.instance_of(str))
    event_type: str = attrs.field(validator=attrs.validators.in_(EVENT_TYPES))
    timestamp: float = attrs.field(
        validator=attrs.validators.instance_of(float)
    )
    metadata: dict = attrs.field(factory=dict)

    @property
    def category(self) -> Optional[str]:
        return self.metadata.get("category")


class TimeLogger:
    """Records start, stop and progress events and reports durations.

    Parameters
    ----------
    verbosity : str or None, default='default'
        ``None`` (or the string ``'None'``) records nothing. ``'default'``
        records silently and prints totals from :meth:`print_summary`.
        ``'verbose'`` also prints each duration when an event stops.
        ``'debug'`` prints every event as it happens.

    Attributes
    ----------
    verbosity : str or None
        Active verbosity level.
    events : list of TimingEvent
        Every recorded event in order.
    """

    def __init__(self, verbosity: Optional[str] = "default") -> None:
        if verbosity == "None":
            verbosity = None
        if verbosity not in VERBOSITY_LEVELS:
            raise ValueError(
                f"verbosity must be None, 'default', 'verbose', or "
                f"'debug', got '{verbosity}'"
            )
        self.verbosity = verbosity
        self.events: List[TimingEvent] = []
        self._open: Dict[str, float] = {}

    @property
    def enabled(self) -> bool:
        """Whether events are being recorded."""
        return self.verbosity is not None

    def _debug(self, text: str) -> None:
        if self.verbosity == "debug":
            print(f"[DEBUG] {text}")

    def _record(
        self, name: str, event_type: str, metadata: Dict[str, Any]
    ) -> Optional[float]:
        if not name:
            raise ValueError("event_name cannot be empty")
        if not self.enabled:
            return None
        now = time.perf_counter()
        self.events.append(TimingEvent(name, event_type, now, metadata))
        return now

    def start_event(self, event_name: str, **metadata: Any) -> None:
        """Mark the start of ``event_name``."""
        now = self._record(event_name, "start", metadata)
        if now is None:
            return
        self._open[event_name] = now
        self._debug(f"Started: {event_name}")

    def stop_event(self, event_name: str, **metadata: Any) -> None:
        """Mark the end of ``event_name``.

        A stop without a matching start is still recorded; in debug mode a
        note is printed.
        """
        now = self._record(event_name, "stop", metadata)
        if now is None:
            return
        started = self._open.pop(event_name, None)
        if started is None:
            self._debug(
                f"Warning: stop_event('{event_name}') without matching start"
            )
            return
        elapsed = now - started
        if self.verbosity == "verbose":
            print(f"{event_name}: {elapsed:.3f}s")
        self._debug(f"Stopped: {event_name} ({elapsed:.3f}s)")

    def progress(
        self, event_name: str, message: str, **metadata: Any
    ) -> None:
        """Record a one-off note, such as a created kernel."""
        details = dict(metadata, message=message)
        if self._record(event_name, "progress", details) is not None:
            self._debug(f"Progress: {event_name} - {message}")

    def count(
        self,
        event_type: str = "stop",
        category: Optional[str] = None,
        name: Optional[str] = None,
    ) -> int:
        """Number of recorded events matching all given filters.

        Parameters
        ----------
        event_type : str, default='stop'
            Event type to count.
        category : str, optional
            Required ``metadata['category']``.
        name : str, optional
            Required event name.
        """
        return sum(
            1
            for event in self.events
            if event.event_type == event_type
            and (category is None or event.category == category)
            and (name is None or event.name == name)
        )

    def _intervals(
        self, category: Optional[str] = None
    ) -> Iterator[Tuple[str, float]]:
        """Yield ``(name, duration)`` for each matched start/stop pair."""
        starts: Dict[str, float] = {}
        for event in self.events:
            if category is not None and event.category != category:
                continue
            if event.event_type == "start":
                starts[event.name] = event.timestamp
            elif event.event_type == "stop" and event.name in starts:
                yield event.name, event.timestamp - starts.pop(event.name)

    def get_event_duration(self, event_name: str) -> Optional[float]:
        """Duration of the latest completed ``event_name``, or ``None``."""
        latest = None
        for name, elapsed in self._intervals():
            if name == event_name:
                latest = elapsed
        return latest

    def get_aggregate_durations(
        self, category: Optional[str] = None
    ) -> Dict[str, float]:
        """Total duration per event name, optionally for one category."""
        totals: Dict[str, float] = {}
        for name, elapsed in self._intervals(category):
            totals[name] = totals.get(name, 0.0) + elapsed
        return totals

    def print_summary(self) -> None:
        """Print per-event totals. Only 'default' verbosity prints here."""
        if self.verbosity != "default":
            return
        totals = self.get_aggregate_durations()
        if totals:
            print("\nTiming Summary:")
            for name in sorted(totals):
                print(f"  {name}: {totals[name]:.3f}s")
