from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Union

import numpy as np

from colorquant.quantize import kernels
from colorquant.quantize.cluster_state import ClusterState
from colorquant.quantize.colorspace import has_circular_hue
from colorquant.quantize.errors import DispatchError, RunCancelled
from colorquant.utils.appconfig import QuantizeConfig
from colorquant.utils.logging_utils import PerfFrame, logger

CancelToken = Union[threading.Event, Callable[[], bool], None]


class DriverState(Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    RESOLVING = "resolving"
    DONE = "done"


@dataclass
class RunStats:
    iterations: int = 0
    converged: bool = False
    change_history: list = field(default_factory=list)
    timings: dict = field(default_factory=dict)


@dataclass
class RunResult:
    output: np.ndarray
    centroids: np.ndarray
    labels: np.ndarray
    stats: RunStats


def cancel_requested(cancel: CancelToken) -> bool:
    if cancel is None:
        return False
    is_set = getattr(cancel, "is_set", None)
    if callable(is_set):
        return bool(is_set())
    return bool(cancel())


class ConvergenceDriver:
    """Host-side loop that launches the passes and decides when to stop.

    Only the driver starts passes. A pass is never interrupted; the cancel
    token is looked at between passes and before the resolve pass.
    """

    def __init__(self, samples: np.ndarray, initial_centroids: np.ndarray, config: QuantizeConfig,
                 cancel: CancelToken = None, workgroup_size: Optional[int] = None):
        self.samples = samples
        self.initial_centroids = initial_centroids
        self.config = config
        self.cancel = cancel
        self.workgroup_size = workgroup_size
        self.color_space = int(config.color_space)
        self.circular = bool(has_circular_hue(self.color_space))
        self.scale = float(config.fixed_point_scale or kernels.compute_sum_scale(len(samples)))
        self.state = DriverState.INITIALIZING
        self.cluster_state: Optional[ClusterState] = None
        self.stats = RunStats()

    # ----------------------------- STATES ----------------------------- #
    def initialize(self):
        self.state = DriverState.INITIALIZING
        self.stats = RunStats()
        try:
            self.cluster_state = ClusterState(self.samples, self.initial_centroids, int(self.scale),
                                              self.workgroup_size)
        except MemoryError as e:
            self.cluster_state = None
            logger.error(f"Cluster buffer allocation failed: {e}")
            raise DispatchError("initialize", "buffer allocation failed") from e

        cs = self.cluster_state
        logger.debug(
            f"Initialized {cs.pixel_count} samples, {cs.cluster_count} clusters, "
            f"{cs.workgroup_count} workgroups of {cs.workgroup_size}, scale={cs.scale}")

    def step(self) -> int:
        """Run one pass: reduction, fold, centroid update, change-counter readback."""
        cs = self._require_state()
        self.state = DriverState.ITERATING

        cs.reset('change_counter', 'accumulators')
        self._dispatch("assign_accumulate", kernels.assign_accumulate,
                       cs['samples'], cs['centroids'], cs.cluster_count, cs['labels'],
                       cs['partials'], cs['group_changes'], cs.workgroup_size, self.scale, self.circular)
        self._dispatch("fold_partials", kernels.fold_partials,
                       cs['partials'], cs['accumulators'], cs.cluster_count)
        cs['change_counter'][0] = cs['group_changes'].sum()
        self._dispatch("update_centroids", kernels.update_centroids,
                       cs['accumulators'], cs['centroids'], cs.cluster_count, self.scale, self.circular)

        changes = cs.change_count
        self.stats.iterations += 1
        self.stats.change_history.append(changes)
        logger.debug(f"Pass {self.stats.iterations}: {changes} label changes")
        return changes

    def iterate(self) -> DriverState:
        while True:
            self._check_cancel()
            changes = self.step()
            if changes == 0:
                self.state = DriverState.CONVERGED
                self.stats.converged = True
                break
            if self.stats.iterations >= self.config.max_iterations:
                self.state = DriverState.MAX_ITERATIONS_REACHED
                logger.debug(f"Iteration cap {self.config.max_iterations} reached with {changes} changes")
                break
        return self.state

    def resolve(self) -> np.ndarray:
        cs = self._require_state()
        self.state = DriverState.RESOLVING
        try:
            out = np.empty((cs.pixel_count, 4), dtype=np.float64)
        except MemoryError as e:
            self.cluster_state = None
            raise DispatchError("resolve_output", "output allocation failed") from e
        self._dispatch("resolve_output", kernels.resolve_output,
                       cs['samples'], cs['centroids'], cs.cluster_count, cs['labels'],
                       self.color_space, bool(self.config.preserve_alpha), out)
        self.state = DriverState.DONE
        return out

    def run(self) -> RunResult:
        perf = PerfFrame("color_quantize.driver")
        self.initialize()
        perf.mark("initialize")
        self.iterate()
        perf.mark("iterate")
        self._check_cancel()
        output = self.resolve()
        perf.mark("resolve")

        cs = self.cluster_state
        self.stats.timings = perf.as_dict()
        outcome = "converged" if self.stats.converged else "iteration cap reached"
        logger.info(
            f"Clustered {cs.pixel_count} pixels into {cs.cluster_count} colors "
            f"in {self.stats.iterations} passes ({outcome})")
        return RunResult(
            output=output,
            centroids=cs.centroids.copy(),
            labels=cs.labels.copy(),
            stats=self.stats,
        )

    # ----------------------------- HELPERS ----------------------------- #
    def _require_state(self) -> ClusterState:
        if self.cluster_state is None:
            raise RuntimeError("ConvergenceDriver.initialize() must run before dispatching passes")
        return self.cluster_state

    def _dispatch(self, stage: str, kernel, *args):
        try:
            return kernel(*args)
        except Exception as e:
            # A partial pass leaves the accumulators inconsistent
            self.cluster_state = None
            logger.error(f"Kernel '{stage}' failed after {self.stats.iterations} passes: {e}")
            raise DispatchError(stage, str(e)) from e

    def _check_cancel(self):
        if cancel_requested(self.cancel):
            self.cluster_state = None
            logger.info(f"Quantize cancelled after {self.stats.iterations} passes")
            raise RunCancelled(f"Cancelled after {self.stats.iterations} passes")
