"""Typed model of ffmpeg audio filter graphs.

Filters are small dataclasses holding numeric options only, so a rendered
graph never contains caller-supplied text. Chains connect labelled pads;
``FilterGraph.validate`` checks the wiring before ``render`` produces the
``-filter_complex`` string.
"""

import math
import re
from dataclasses import dataclass, field

_LABEL_RE = re.compile(r"^[A-Za-z0-9_]+$")
_INPUT_PAD_RE = re.compile(r"^(\d+):a$")


class FilterGraphError(ValueError):
    pass


def _num(value: float, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise FilterGraphError(f"{name} must be a finite number, got {value!r}")
    return value


def _seconds(value: float) -> str:
    return f"{value:.3f}"


def _level(value: float) -> str:
    return f"{value:.6g}"


@dataclass(frozen=True)
class Trim:
    """atrim: keep [start_s, end_s) of the stream."""

    start_s: float | None = None
    end_s: float | None = None

    def __post_init__(self):
        if self.start_s is None and self.end_s is None:
            raise FilterGraphError("Trim needs a start, an end, or both")
        if self.start_s is not None and _num(self.start_s, "trim start") < 0:
            raise FilterGraphError(f"Trim start {self.start_s} is negative")
        if self.end_s is not None and _num(self.end_s, "trim end") < 0:
            raise FilterGraphError(f"Trim end {self.end_s} is negative")
        if self.start_s is not None and self.end_s is not None and self.end_s < self.start_s:
            raise FilterGraphError(f"Trim end {self.end_s} precedes start {self.start_s}")

    def render(self) -> str:
        opts = []
        if self.start_s is not None:
            opts.append(f"start={_seconds(self.start_s)}")
        if self.end_s is not None:
            opts.append(f"end={_seconds(self.end_s)}")
        return "atrim=" + ":".join(opts)


@dataclass(frozen=True)
class Volume:
    level: float

    def __post_init__(self):
        if _num(self.level, "volume") < 0:
            raise FilterGraphError(f"Volume {self.level} is negative")

    def render(self) -> str:
        return f"volume={_level(self.level)}"


@dataclass(frozen=True)
class ResetTimestamps:
    def render(self) -> str:
        return "asetpts=PTS-STARTPTS"


@dataclass(frozen=True)
class Pad:
    """apad: append silence indefinitely; follow with a Trim to bound it."""

    def render(self) -> str:
        return "apad"


@dataclass(frozen=True)
class Format:
    sample_rate: int
    channel_layout: str = "stereo"

    def __post_init__(self):
        if _num(self.sample_rate, "sample rate") <= 0:
            raise FilterGraphError(f"Sample rate {self.sample_rate} must be positive")
        if not _LABEL_RE.match(self.channel_layout):
            raise FilterGraphError(f"Bad channel layout {self.channel_layout!r}")

    def render(self) -> str:
        return f"aformat=sample_rates={int(self.sample_rate)}:channel_layouts={self.channel_layout}"


@dataclass(frozen=True)
class Tempo:
    """atempo: change speed without changing pitch. ffmpeg accepts 0.5 to 2.0 per step."""

    factor: float

    MIN = 0.5
    MAX = 2.0

    def __post_init__(self):
        if not self.MIN <= _num(self.factor, "tempo") <= self.MAX:
            raise FilterGraphError(
                f"Tempo factor {self.factor} outside [{self.MIN}, {self.MAX}]"
            )

    def render(self) -> str:
        return f"atempo={self.factor:.6f}"


@dataclass(frozen=True)
class Silence:
    """anullsrc source node: endless silence in the given format."""

    sample_rate: int
    channel_layout: str = "stereo"
    is_source = True

    def __post_init__(self):
        if _num(self.sample_rate, "sample rate") <= 0:
            raise FilterGraphError(f"Sample rate {self.sample_rate} must be positive")
        if not _LABEL_RE.match(self.channel_layout):
            raise FilterGraphError(f"Bad channel layout {self.channel_layout!r}")

    def render(self) -> str:
        return f"anullsrc=r={int(self.sample_rate)}:cl={self.channel_layout}"


@dataclass(frozen=True)
class Concat:
    n: int

    def __post_init__(self):
        if not isinstance(self.n, int) or self.n < 1:
            raise FilterGraphError(f"Concat needs at least one input, got {self.n!r}")

    def render(self) -> str:
        return f"concat=n={self.n}:v=0:a=1"


Filter = Trim | Volume | ResetTimestamps | Pad | Format | Tempo | Silence | Concat


@dataclass
class FilterChain:
    """Linear run of filters from ``inputs`` pads to ``outputs`` pads."""

    inputs: list[str]
    filters: list[Filter]
    outputs: list[str] = field(default_factory=list)

    def render(self) -> str:
        ins = "".join(f"[{p}]" for p in self.inputs)
        outs = "".join(f"[{p}]" for p in self.outputs)
        return ins + ",".join(f.render() for f in self.filters) + outs


def render_chain(filters: list[Filter]) -> str:
    """Render a simple -af chain (single input, single output)."""
    if not filters:
        raise FilterGraphError("Empty filter chain")
    if any(getattr(f, "is_source", False) or isinstance(f, Concat) for f in filters):
        raise FilterGraphError("A simple chain cannot contain sources or concat")
    return ",".join(f.render() for f in filters)


class FilterGraph:
    """A -filter_complex graph over ``num_inputs`` input files."""

    def __init__(self, num_inputs: int):
        self.num_inputs = num_inputs
        self.chains: list[FilterChain] = []

    def add(self, chain: FilterChain) -> FilterChain:
        self.chains.append(chain)
        return chain

    def outputs(self) -> list[str]:
        """Labels produced but never consumed: the graph's output pads."""
        consumed = {p for c in self.chains for p in c.inputs}
        return [p for c in self.chains for p in c.outputs if p not in consumed]

    def validate(self) -> None:
        if not self.chains:
            raise FilterGraphError("Filter graph has no chains")

        produced: set[str] = set()
        consumed: set[str] = set()
        for i, chain in enumerate(self.chains):
            if not chain.filters:
                raise FilterGraphError(f"Chain {i} has no filters")
            if not chain.outputs:
                raise FilterGraphError(f"Chain {i} has no output label")

            first, last = chain.filters[0], chain.filters[-1]
            if getattr(first, "is_source", False):
                if chain.inputs:
                    raise FilterGraphError(f"Chain {i} starts with a source but has inputs")
            elif not chain.inputs:
                raise FilterGraphError(f"Chain {i} has no inputs")
            if any(getattr(f, "is_source", False) for f in chain.filters[1:]):
                raise FilterGraphError(f"Chain {i} has a source after its first filter")
            if any(isinstance(f, Concat) for f in chain.filters[:-1]):
                raise FilterGraphError(f"Chain {i} must end with its concat")
            if isinstance(last, Concat):
                if len(chain.inputs) != last.n:
                    raise FilterGraphError(
                        f"Chain {i} concatenates {last.n} streams but has "
                        f"{len(chain.inputs)} inputs"
                    )
            elif len(chain.inputs) > 1:
                raise FilterGraphError(f"Chain {i} has several inputs but no concat")

            for pad in chain.inputs:
                m = _INPUT_PAD_RE.match(pad)
                if m:
                    if int(m.group(1)) >= self.num_inputs:
                        raise FilterGraphError(
                            f"Chain {i} reads input {m.group(1)} but only "
                            f"{self.num_inputs} inputs exist"
                        )
                    continue
                if not _LABEL_RE.match(pad):
                    raise FilterGraphError(f"Bad pad label {pad!r}")
                if pad not in produced:
                    raise FilterGraphError(f"Chain {i} reads [{pad}] before it is produced")
                if pad in consumed:
                    raise FilterGraphError(f"[{pad}] is consumed twice")
                consumed.add(pad)

            for pad in chain.outputs:
                if not _LABEL_RE.match(pad):
                    raise FilterGraphError(f"Bad pad label {pad!r}")
                if pad in produced:
                    raise FilterGraphError(f"[{pad}] is produced twice")
                produced.add(pad)

    def render(self) -> str:
        self.validate()
        return ";".join(c.render() for c in self.chains)
