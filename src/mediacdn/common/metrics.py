"""In-process metrics rendered in the Prometheus text exposition format."""

from __future__ import annotations

import threading
from typing import Callable, Dict, Iterable


class _Metric:
    kind = "untyped"

    def __init__(self, name: str, description: str = "") -> None:
        self.name = name
        self.description = description
        self._lock = threading.Lock()

    def _header(self) -> list[str]:
        return [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]

    def samples(self) -> Iterable[str]:
        raise NotImplementedError

    def render(self) -> str:
        return "\n".join([*self._header(), *self.samples()]) + "\n"


class Counter(_Metric):
    kind = "counter"

    def __init__(self, name: str, description: str = "") -> None:
        super().__init__(name, description)
        self._value = 0.0

    def inc(self, amount: float = 1.0) -> None:
        if amount < 0:
            raise ValueError("counters only go up")
        with self._lock:
            self._value += amount

    @property
    def value(self) -> float:
        return self._value

    def samples(self) -> Iterable[str]:
        yield f"{self.name} {self._value}"


class LabeledCounter(_Metric):
    """Counter split by the value of a single label, e.g. ``status_class="2xx"``."""

    kind = "counter"

    def __init__(self, name: str, description: str = "", *, label: str) -> None:
        super().__init__(name, description)
        self.label = label
        self._values: Dict[str, float] = {}

    def inc(self, label_value: str, amount: float = 1.0) -> None:
        with self._lock:
            self._values[label_value] = self._values.get(label_value, 0.0) + amount

    def value(self, label_value: str) -> float:
        return self._values.get(label_value, 0.0)

    def samples(self) -> Iterable[str]:
        for label_value in sorted(self._values):
            yield f'{self.name}{{{self.label}="{label_value}"}} {self._values[label_value]}'


class Gauge(_Metric):
    kind = "gauge"

    def __init__(self, name: str, description: str = "", supplier: Callable[[], float] | None = None) -> None:
        super().__init__(name, description)
        self._value = 0.0
        self._supplier = supplier

    def set(self, value: float) -> None:
        self._value = value

    @property
    def value(self) -> float:
        return self._supplier() if self._supplier else self._value

    def samples(self) -> Iterable[str]:
        yield f"{self.name} {self.value}"


class Histogram(_Metric):
    kind = "histogram"

    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        super().__init__(name, description)
        self._bounds = sorted(buckets)
        # Per-bucket counts; samples() accumulates them.
        self._counts = [0] * len(self._bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        with self._lock:
            self._count += 1
            self._sum += value
            for position, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[position] += 1
                    break

    def samples(self) -> Iterable[str]:
        running = 0
        for bound, count in zip(self._bounds, self._counts):
            running += count
            yield f'{self.name}_bucket{{le="{bound}"}} {running}'
        yield f'{self.name}_bucket{{le="+Inf"}} {self._count}'
        yield f"{self.name}_sum {self._sum}"
        yield f"{self.name}_count {self._count}"


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, _Metric] = {}

    def register(self, metric):
        # Names are unique; a repeat registration returns the first metric.
        return self._metrics.setdefault(metric.name, metric)

    def render(self) -> str:
        return "".join(self._metrics[name].render() for name in sorted(self._metrics))


GLOBAL_REGISTRY = MetricsRegistry()
