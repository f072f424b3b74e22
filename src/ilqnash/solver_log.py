# ──────────────────────────────────────────────────────────────────────────────
#  src/ilqnash/solver_log.py
#  Append-only record of accepted iterates (the only view visualizers get)
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations
import pickle
from typing import Iterator, List, NamedTuple, Tuple

import numpy as np
import jax

from .operating_point import OperatingPoint, Strategy


class IterateRecord(NamedTuple):
    iteration:         int
    operating_point:   OperatingPoint
    costs:             jax.Array        # (N,) per-player total cost
    strategies:        List[Strategy]
    step_size:         float            # 0.0 when the line search failed
    regularized_steps: int
    wall_time:         float            # s spent in this iteration

    @property
    def total_cost(self) -> float:
        return float(np.sum(np.asarray(self.costs)))


class SolverLog(object):
    """Single-writer, append-only sequence of IterateRecords."""

    def __init__(self, name: str = ""):
        self._name = name
        self._records: List[IterateRecord] = []

    def append(self, record: IterateRecord):
        if self._records and record.iteration <= self._records[-1].iteration:
            raise ValueError(
                f"iterate {record.iteration} appended after {self._records[-1].iteration}")
        self._records.append(record)

    # ---------------- read-only access -----------------------------
    def __len__(self) -> int:
        return len(self._records)

    def __getitem__(self, idx) -> IterateRecord:
        return self._records[idx]

    def __iter__(self) -> Iterator[IterateRecord]:
        return iter(tuple(self._records))

    @property
    def name(self) -> str:
        return self._name

    @property
    def records(self) -> Tuple[IterateRecord, ...]:
        return tuple(self._records)

    def final(self) -> IterateRecord:
        if not self._records:
            raise IndexError("solver log is empty")
        return self._records[-1]

    def total_costs(self) -> np.ndarray:
        """(num_iterates, N) history of per-player total costs."""
        return np.stack([np.asarray(r.costs) for r in self._records])

    def states(self, iterate: int) -> np.ndarray:
        """(n, K+1) state trajectory of one logged iterate."""
        return np.asarray(self._records[iterate].operating_point.xs)

    # ---------------- persistence ---------------------------------
    def save(self, path):
        with open(path, "wb") as fh:
            pickle.dump({"name": self._name,
                         "records": jax.device_get(self._records)}, fh)

    @classmethod
    def load(cls, path) -> "SolverLog":
        with open(path, "rb") as fh:
            data = pickle.load(fh)
        log = cls(data["name"])
        for record in data["records"]:
            log.append(record)
        return log
