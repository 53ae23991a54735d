# tabulator.py
from __future__ import annotations

import logging
from typing import Optional, Union

import numpy as np

from .config import DEFAULT_T_PROB_HINT, INIT_TABLE_SIZE, TABULATOR_LAYER_STEP
from .generators import IsoLayeredGenerator, IsoThresholdGenerator
from .iso import Iso, as_iso

logger = logging.getLogger(__name__)


def _grow(arr: Optional[np.ndarray], new_size: int) -> Optional[np.ndarray]:
    """Copy `arr` into a larger buffer of `new_size` rows (None stays None)."""
    if arr is None:
        return None
    out = np.empty((new_size,) + arr.shape[1:], dtype=arr.dtype)
    out[:arr.shape[0]] = arr
    return out


class Tabulator:
    """
    Parallel arrays materialized from a generator.

    ``masses``, ``lprobs``, ``probs`` are (N,) float arrays and ``confs`` is an
    (N, all_dim) int array; any of them may be None if it was not requested.
    ``release_*`` hands a buffer over to the caller, after which the
    tabulator holds None in its place.
    """

    def __init__(self) -> None:
        self._masses: Optional[np.ndarray] = None
        self._lprobs: Optional[np.ndarray] = None
        self._probs: Optional[np.ndarray] = None
        self._confs: Optional[np.ndarray] = None
        self._confs_no = 0
        self.all_dim = 0

    def _view(self, arr: Optional[np.ndarray]) -> Optional[np.ndarray]:
        return None if arr is None else arr[:self._confs_no]

    @property
    def masses(self) -> Optional[np.ndarray]:
        return self._view(self._masses)

    @property
    def lprobs(self) -> Optional[np.ndarray]:
        return self._view(self._lprobs)

    @property
    def probs(self) -> Optional[np.ndarray]:
        return self._view(self._probs)

    @property
    def confs(self) -> Optional[np.ndarray]:
        return self._view(self._confs)

    @property
    def confs_no(self) -> int:
        return self._confs_no

    def release_masses(self) -> Optional[np.ndarray]:
        ret, self._masses = self.masses, None
        return ret

    def release_lprobs(self) -> Optional[np.ndarray]:
        ret, self._lprobs = self.lprobs, None
        return ret

    def release_probs(self) -> Optional[np.ndarray]:
        ret, self._probs = self.probs, None
        return ret

    def release_confs(self) -> Optional[np.ndarray]:
        ret, self._confs = self.confs, None
        return ret

    def _allocate(self, size: int, get_masses: bool, get_probs: bool,
                  get_lprobs: bool, get_confs: bool) -> None:
        if get_masses:
            self._masses = np.empty(size, dtype=float)
        if get_lprobs:
            self._lprobs = np.empty(size, dtype=float)
        if get_probs:
            self._probs = np.empty(size, dtype=float)
        if get_confs:
            self._confs = np.empty((size, self.all_dim), dtype=int)

    def _store_conf(self, generator, idx: int) -> None:
        if self._masses is not None:
            self._masses[idx] = generator.mass()
        if self._lprobs is not None:
            self._lprobs[idx] = generator.lprob()
        if self._probs is not None:
            self._probs[idx] = generator.prob()
        if self._confs is not None:
            generator.get_conf_signature(self._confs[idx])


class ThresholdTabulator(Tabulator):
    """
    All configurations with probability >= threshold.

    The generator is run twice: once to count, once to fill arrays of exactly
    the right size.
    """

    def __init__(
        self,
        iso: Union[Iso, str],
        threshold: float,
        absolute: bool = True,
        get_masses: bool = True,
        get_probs: bool = True,
        get_lprobs: bool = False,
        get_confs: bool = False,
        reorder_marginals: bool = True,
    ) -> None:
        super().__init__()
        generator = IsoThresholdGenerator(iso, threshold, absolute, reorder_marginals=reorder_marginals)

        n = generator.count_confs()
        self.all_dim = generator.all_dim
        self._allocate(n, get_masses, get_probs, get_lprobs, get_confs)

        idx = 0
        while generator.advance():
            self._store_conf(generator, idx)
            idx += 1
        self._confs_no = idx
        logger.debug("Threshold tabulation: %d configurations", idx)


class LayeredTabulator(Tabulator):
    """
    Configurations covering at least `target_total_prob` of the distribution.

    Parameters
    ----------
    iso : Iso | str
        Molecule (consumed unless the target is <= 0).
    target_total_prob : float
        Requested coverage. ``<= 0`` gives an empty table, ``>= 1`` everything.
    optimize : bool, default True
        If True, return a smallest set reaching the target: the last layer is
        completed and then trimmed with a weighted quickselect. If False,
        stop as soon as the target is reached.
    rng : numpy.random.Generator | None
        Pivot source for the trimming step.
    deterministic_pivot : bool, default False
        Use the midpoint of the unresolved range as pivot instead of `rng`.
    reorder_marginals : bool, default True
        Let the generator visit elements in its own order; the set is unchanged.
    t_prob_hint : float
        Expected coverage, used only to pick that order.
    """

    def __init__(
        self,
        iso: Union[Iso, str],
        target_total_prob: float,
        optimize: bool = True,
        get_masses: bool = True,
        get_probs: bool = True,
        get_lprobs: bool = False,
        get_confs: bool = False,
        init_table_size: int = INIT_TABLE_SIZE,
        layer_step: float = TABULATOR_LAYER_STEP,
        rng: Optional[np.random.Generator] = None,
        deterministic_pivot: bool = False,
        reorder_marginals: bool = True,
        t_prob_hint: float = DEFAULT_T_PROB_HINT,
    ) -> None:
        super().__init__()
        iso = as_iso(iso)
        self.all_dim = iso.all_dim
        self.optimize = bool(optimize)
        self.target_total_prob = float("inf") if target_total_prob >= 1.0 else float(target_total_prob)
        self._current_size = max(int(init_table_size), 1)

        if target_total_prob <= 0.0:
            return

        generator = IsoLayeredGenerator(iso, reorder_marginals=reorder_marginals, t_prob_hint=t_prob_hint)

        user_wants_probs = get_probs
        if self.optimize:
            get_probs = True
        self._allocate(self._current_size, get_masses, get_probs, get_lprobs, get_confs)

        target = self.target_total_prob
        last_switch = 0
        prob_at_last_switch = 0.0
        prob_so_far = 0.0

        # store confs until enough probability is accumulated; when optimizing,
        # store the rest of the last layer as well
        while True:
            while generator.advance_within_layer():
                self._add_conf(generator)
                prob_so_far += generator.prob()
                if not self.optimize and prob_so_far >= target:
                    self._finish(user_wants_probs)
                    return
            if prob_so_far >= target:
                break
            last_switch = self._confs_no
            prob_at_last_switch = prob_so_far
            if not generator.next_layer(layer_step):
                break

        if self.optimize and prob_so_far > target:
            if rng is None and not deterministic_pivot:
                rng = np.random.default_rng()
            before = self._confs_no
            self._confs_no = self._quicktrim(last_switch, self._confs_no, prob_at_last_switch,
                                             rng, deterministic_pivot)
            logger.debug("Quicktrim kept %d of %d configurations", self._confs_no, before)
            if self._confs_no <= self._current_size // 2:
                self._shrink_to_fit()

        self._finish(user_wants_probs)

    def _add_conf(self, generator: IsoLayeredGenerator) -> None:
        if self._confs_no == self._current_size:
            self._current_size *= 2
            self._masses = _grow(self._masses, self._current_size)
            self._lprobs = _grow(self._lprobs, self._current_size)
            self._probs = _grow(self._probs, self._current_size)
            self._confs = _grow(self._confs, self._current_size)
        self._store_conf(generator, self._confs_no)
        self._confs_no += 1

    def _reorder(self, start: int, end: int, order: np.ndarray) -> None:
        """Permute rows [start, end) of every buffer in lockstep."""
        for arr in (self._probs, self._lprobs, self._masses, self._confs):
            if arr is not None:
                arr[start:end] = arr[start:end][order]

    def _quicktrim(self, start: int, end: int, sum_to_start: float,
                   rng: Optional[np.random.Generator], deterministic_pivot: bool) -> int:
        """
        Quickselect on the prob array, except that the cumulative probability
        left of the pivot (not its position) decides which side to keep.
        Returns the number of configurations to keep.
        """
        target = self.target_total_prob
        probs = self._probs

        while start < end:
            length = end - start
            offset = length // 2 if deterministic_pivot else int(rng.integers(length))
            pprob = probs[start + offset]

            seg = probs[start:end]
            greater = np.flatnonzero(seg > pprob)
            rest = np.flatnonzero(seg <= pprob)
            rest = rest[rest != offset]
            self._reorder(start, end, np.concatenate([greater, [offset], rest]))

            loweridx = start + greater.size
            new_csum = sum_to_start + float(probs[start:loweridx].sum())

            if new_csum < target:
                start = loweridx + 1
                sum_to_start = new_csum + float(probs[loweridx])
            else:
                end = loweridx

        return end

    def _shrink_to_fit(self) -> None:
        n = self._confs_no
        if self._masses is not None:
            self._masses = self._masses[:n].copy()
        if self._lprobs is not None:
            self._lprobs = self._lprobs[:n].copy()
        if self._probs is not None:
            self._probs = self._probs[:n].copy()
        if self._confs is not None:
            self._confs = self._confs[:n].copy()
        self._current_size = n

    def _finish(self, user_wants_probs: bool) -> None:
        if not user_wants_probs:
            self._probs = None
