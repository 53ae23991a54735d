# generators.py
from __future__ import annotations

import heapq
import logging
import math
import sys
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.special import gammaln
from scipy.stats import chi2

from .config import DEFAULT_T_PROB_HINT, DEFAULT_TAB_SIZE, FIRST_LAYER_OFFSET, LAYER_LPROB_STEP
from .iso import Iso, as_iso
from .marginal import LayeredMarginal, MarginalTrek, PrecalculatedMarginal

logger = logging.getLogger(__name__)

# ==== constants ====
LOWEST_LPROB      = -sys.float_info.max
LOG_2_PLUS_LOG_PI = math.log(2.0) + math.log(math.pi)
NEG_INF           = float("-inf")
INF               = float("inf")


# -----------------------------------------------------------------------------
# Common base
# -----------------------------------------------------------------------------
class IsoGenerator(Iso):
    """
    Stateful cursor over the configurations of a molecule.

    The generator takes exclusive ownership of the Iso it is built from (the
    argument is disowned). A formula string is accepted as well.

    Subclasses implement ``advance()``, which moves to the next configuration
    and returns False once there is none, and the accessors ``mass()``,
    ``lprob()``, ``prob()`` and ``get_conf_signature()``.
    """

    def __init__(self, iso: Union[Iso, str], alloc_partials: bool = True) -> None:
        super().__init__()
        self._take_over(as_iso(iso))
        if self.dim_number == 0:
            raise ValueError("Cannot build a generator for a molecule without elements.")

        D = self.dim_number
        if alloc_partials:
            # suffix sums over dims [k..D); index D holds the identity
            self._partial_lprobs: List[float] = [0.0] * (D + 1)
            self._partial_masses: List[float] = [0.0] * (D + 1)
            self._partial_probs: List[float] = [1.0] * (D + 1)

    def advance(self) -> bool:
        raise NotImplementedError

    def mass(self) -> float:
        raise NotImplementedError

    def lprob(self) -> float:
        raise NotImplementedError

    def prob(self) -> float:
        raise NotImplementedError

    def get_conf_signature(self, space=None) -> np.ndarray:
        raise NotImplementedError

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        """Yield (mass, prob) for every remaining configuration."""
        while self.advance():
            yield self.mass(), self.prob()


# -----------------------------------------------------------------------------
# Odometer-style generators (threshold and layered)
# -----------------------------------------------------------------------------
class _CounterGenerator(IsoGenerator):
    """
    Mixed-radix odometer over per-element configuration lists sorted by
    decreasing probability. Dimension 0 changes fastest; dimension k > 0
    contributes through the cached suffix sums ``_partial_*[k]``.
    """

    _marginal_results: list
    _l_cutoff: float

    def _install_marginals(self, unsorted: list, order: Optional[List[int]]) -> None:
        D = self.dim_number
        if order is not None:
            self._marginal_results = [unsorted[ii] for ii in order]
            # caller element index -> position in _marginal_results
            self._marginal_order: Optional[List[int]] = [0] * D
            for pos, ii in enumerate(order):
                self._marginal_order[ii] = pos
        else:
            self._marginal_results = list(unsorted)
            self._marginal_order = None

        first = self._marginal_results[0]
        self._lprobs0 = first.lprobs
        self._masses0 = first.masses
        self._probs0 = first.probs

        # best achievable log-prob of dims [0..k], used to prune carries
        self._max_confs_lp_sum: List[float] = []
        acc = 0.0
        for mr in self._marginal_results[:-1]:
            acc += mr.mode_lprob
            self._max_confs_lp_sum.append(acc)

        self._counter = [0] * D
        self._lcfmsv = INF

    def _recalc(self, idx: int) -> None:
        pl, pm, pp = self._partial_lprobs, self._partial_masses, self._partial_probs
        for ii in range(idx, 0, -1):
            mr = self._marginal_results[ii]
            c = self._counter[ii]
            pl[ii] = pl[ii + 1] + mr.lprobs[c]
            pm[ii] = pm[ii + 1] + mr.masses[c]
            pp[ii] = pp[ii + 1] * mr.probs[c]
        # lowest admissible log-prob of dim 0 given the current higher dims
        self._lcfmsv = self._l_cutoff - pl[1]

    def _carry(self) -> bool:
        counter = self._counter
        pl = self._partial_lprobs
        idx = 0
        while idx < self.dim_number - 1:
            counter[idx] = 0
            idx += 1
            counter[idx] += 1
            mr = self._marginal_results[idx]
            pl[idx] = pl[idx + 1] + mr.lprobs[counter[idx]]
            if pl[idx] + self._max_confs_lp_sum[idx - 1] >= self._l_cutoff:
                self._partial_masses[idx] = self._partial_masses[idx + 1] + mr.masses[counter[idx]]
                self._partial_probs[idx] = self._partial_probs[idx + 1] * mr.probs[counter[idx]]
                self._recalc(idx - 1)
                return True
        return False

    def terminate_search(self) -> None:
        """Park the cursor so that every later advance() reports exhaustion."""
        for ii, mr in enumerate(self._marginal_results):
            self._counter[ii] = mr.no_confs - 1
            self._partial_lprobs[ii] = NEG_INF
        self._partial_lprobs[self.dim_number] = NEG_INF
        self._lcfmsv = INF

    # ---- accessors ----
    def lprob(self) -> float:
        return self._partial_lprobs[1] + self._lprobs0[self._counter[0]]

    def mass(self) -> float:
        return self._partial_masses[1] + self._masses0[self._counter[0]]

    def prob(self) -> float:
        return self._partial_probs[1] * self._probs0[self._counter[0]]

    def get_conf_signature(self, space=None) -> np.ndarray:
        """
        Write the current configuration (``all_dim`` isotope counts, in the
        caller's element order) into `space` and return it.
        """
        if space is None:
            space = np.empty(self.all_dim, dtype=int)
        pos = 0
        for ii in range(self.dim_number):
            jj = ii if self._marginal_order is None else self._marginal_order[ii]
            conf = self._marginal_results[jj].confs[self._counter[jj]]
            space[pos:pos + len(conf)] = conf
            pos += len(conf)
        return space


class IsoThresholdGenerator(_CounterGenerator):
    """
    Every configuration with probability at or above a threshold.

    Parameters
    ----------
    iso : Iso | str
        Molecule (consumed).
    threshold : float
        Probability cutoff. ``<= 0`` enumerates everything.
    absolute : bool, default True
        If False, the cutoff is relative to the most probable configuration.
    reorder_marginals : bool, default True
        Put the element with the most precomputed configurations on the
        fastest-changing dimension. Reported configurations keep the caller's
        element order.
    """

    def __init__(
        self,
        iso: Union[Iso, str],
        threshold: float,
        absolute: bool = True,
        reorder_marginals: bool = True,
    ) -> None:
        super().__init__(iso)
        if threshold <= 0.0:
            self._l_cutoff = LOWEST_LPROB
        elif absolute:
            self._l_cutoff = math.log(threshold)
        else:
            self._l_cutoff = math.log(threshold) + self.mode_lprob

        unsorted = [
            PrecalculatedMarginal(m, self._l_cutoff - self.mode_lprob + m.mode_lprob)
            for m in self.marginals
        ]
        self._empty = any(not mr.in_range(0) for mr in unsorted)

        order = None
        if reorder_marginals and self.dim_number > 1:
            order = sorted(range(self.dim_number), key=lambda ii: -unsorted[ii].no_confs)
        self._install_marginals(unsorted, order)

        logger.debug("Threshold generator: cutoff %.6g, marginal sizes %s",
                     self._l_cutoff, [mr.no_confs for mr in self._marginal_results])
        self.reset()

    def advance(self) -> bool:
        self._counter[0] += 1
        if self._lprobs0[self._counter[0]] >= self._lcfmsv:
            return True
        if self._carry():
            return True
        self.terminate_search()
        return False

    def reset(self) -> None:
        """Rewind to just before the first configuration."""
        if self._empty:
            self.terminate_search()
            return
        self._partial_lprobs[self.dim_number] = 0.0
        for ii in range(self.dim_number):
            self._counter[ii] = 0
        self._recalc(self.dim_number - 1)
        self._counter[0] = -1

    def count_confs(self) -> int:
        """Number of configurations above the threshold (one full pass, then reset)."""
        ret = 0
        while self.advance():
            ret += 1
        self.reset()
        return ret


class IsoLayeredGenerator(_CounterGenerator):
    """
    Threshold search whose cutoff is lowered layer by layer.

    Each ``next_layer(offset)`` lowers the log-prob threshold by `offset`,
    extends every marginal down to it and restarts the odometer; within a
    layer only configurations not emitted by earlier layers are reported.
    """

    def __init__(
        self,
        iso: Union[Iso, str],
        reorder_marginals: bool = True,
        t_prob_hint: float = DEFAULT_T_PROB_HINT,
    ) -> None:
        super().__init__(iso)
        self._current_lthreshold = math.nextafter(self.mode_lprob, NEG_INF)
        self._last_lthreshold = INF
        self._l_cutoff = self._current_lthreshold
        self._last_lcfmsv = INF
        self._layer_boundary = 0
        self._layer_exhausted = False

        unsorted = [LayeredMarginal(m) for m in self.marginals]

        order = None
        if reorder_marginals and self.dim_number > 1:
            priorities = self._marginal_priorities(unsorted, t_prob_hint)
            order = sorted(range(self.dim_number), key=priorities.__getitem__)
        self._install_marginals(unsorted, order)

        self.next_layer(FIRST_LAYER_OFFSET)

    def _marginal_priorities(self, unsorted: Sequence[LayeredMarginal], t_prob_hint: float) -> List[float]:
        """
        Gaussian approximation of each marginal: the volume of its optimal
        P-ellipsoid, from the chi-square quantile, estimates how many
        configurations the search will visit. Only the ordering matters, so
        constant factors and the final exp() are dropped.
        """
        K = self.all_dim - self.dim_number
        log_r2 = math.log(chi2.ppf(t_prob_hint, K)) if K > 0 else 0.0

        priorities = []
        for ii, mr in enumerate(unsorted):
            i = mr.isotope_no
            n = self.atom_counts[ii]
            if i == 1 or n == 0:
                priorities.append(0.0)
                continue
            k = float(i - 1)
            sum_lprobs = float(np.sum(mr.atom_lprobs))
            sum_rademacher = sum(math.log1p(jj / n) for jj in range(1, i))
            priorities.append(-(sum_lprobs / 2.0 + sum_rademacher - float(gammaln((k + 2.0) / 2.0))
                                + k / 2.0 * (log_r2 + LOG_2_PLUS_LOG_PI + math.log(n))))
        return priorities

    def _recalc(self, idx: int) -> None:
        super()._recalc(idx)
        self._last_lcfmsv = self._last_lthreshold - self._partial_lprobs[1]

    def _skip_start(self) -> int:
        """First dim-0 index not already emitted in an earlier layer."""
        lps = self._lprobs0
        target = self._last_lcfmsv
        lo, hi = 0, self._layer_boundary
        while lo < hi:
            mid = (lo + hi) // 2
            if lps[mid] >= target:
                lo = mid + 1
            else:
                hi = mid
        return lo

    def _carry(self) -> bool:
        if not super()._carry():
            return False
        self._counter[0] = self._skip_start() - 1
        return True

    def next_layer(self, offset: float) -> bool:
        """Lower the threshold by `offset` (negative). False once nothing is left."""
        if self._last_lthreshold < self.unlikeliest_peak_lprob():
            return False

        # dim-0 entries beyond this index are new in the coming layer
        self._layer_boundary = self._marginal_results[0].no_confs

        self._last_lthreshold = self._current_lthreshold
        self._current_lthreshold += offset
        self._l_cutoff = self._current_lthreshold

        for mr in self._marginal_results:
            mr.extend(self._current_lthreshold - self.mode_lprob + mr.mode_lprob)

        for ii in range(self.dim_number):
            self._counter[ii] = 0
        self._recalc(self.dim_number - 1)
        self._counter[0] = self._skip_start() - 1
        self._layer_exhausted = False

        logger.debug("Layer lowered to %.6g (marginal sizes %s)",
                     self._current_lthreshold, [mr.no_confs for mr in self._marginal_results])
        return True

    def advance_within_layer(self) -> bool:
        if self._layer_exhausted:
            return False
        while True:
            self._counter[0] += 1
            if self._lprobs0[self._counter[0]] >= self._lcfmsv:
                return True
            if not self._carry():
                self._layer_exhausted = True
                return False

    def advance(self) -> bool:
        while not self.advance_within_layer():
            if not self.next_layer(LAYER_LPROB_STEP):
                return False
        return True

    @property
    def current_lthreshold(self) -> float:
        return self._current_lthreshold


# -----------------------------------------------------------------------------
# Globally ordered generator
# -----------------------------------------------------------------------------
class ConfArena:
    """
    Grow-only store of configuration nodes addressed by index.

    Nodes are never freed individually; the whole store goes away with its
    generator. Capacity doubles when full.
    """

    def __init__(self, dim: int, tab_size: int = DEFAULT_TAB_SIZE) -> None:
        self._data = np.zeros((max(int(tab_size), 1), dim), dtype=np.int64)
        self._used = 0

    def new_conf(self) -> int:
        if self._used == self._data.shape[0]:
            grown = np.zeros((2 * self._data.shape[0], self._data.shape[1]), dtype=np.int64)
            grown[:self._used] = self._data
            self._data = grown
        idx = self._used
        self._used += 1
        return idx

    def store(self, idx: int, counts: Sequence[int]) -> None:
        self._data[idx] = counts

    def load(self, idx: int) -> List[int]:
        return self._data[idx].tolist()

    @property
    def capacity(self) -> int:
        return self._data.shape[0]

    def __len__(self) -> int:
        return self._used


class IsoOrderedGenerator(IsoGenerator):
    """
    Configurations in non-increasing probability order.

    A successor of a popped configuration is spawned for each element j
    whose next configuration exists, scanning elements in order and stopping
    after the first element with a non-zero index. This gives every
    configuration exactly one parent, so nothing is generated twice.
    """

    def __init__(self, iso: Union[Iso, str], tab_size: int = DEFAULT_TAB_SIZE) -> None:
        super().__init__(iso, alloc_partials=False)
        self._marginal_results = [MarginalTrek(m) for m in self.marginals]
        self._arena = ConfArena(self.dim_number, tab_size)

        top = self._arena.new_conf()
        zeros = [0] * self.dim_number
        self._pq: List[Tuple[float, int]] = [(-self._combined_lprob(zeros), top)]

        self._current_conf: Optional[List[int]] = None
        self._current_lprob = NEG_INF
        self._current_mass = math.nan
        self._current_prob = 0.0

    def _combined_lprob(self, counts: Sequence[int]) -> float:
        return sum(mr.conf_lprobs[c] for mr, c in zip(self._marginal_results, counts))

    def _combined_mass(self, counts: Sequence[int]) -> float:
        return sum(mr.conf_masses[c] for mr, c in zip(self._marginal_results, counts))

    def advance(self) -> bool:
        if not self._pq:
            return False

        neg_lp, node = heapq.heappop(self._pq)
        counts = self._arena.load(node)

        self._current_lprob = -neg_lp
        self._current_mass = self._combined_mass(counts)
        self._current_prob = math.exp(self._current_lprob)

        reused = False
        for j, mr in enumerate(self._marginal_results):
            if mr.reach_configuration_idx(counts[j] + 1):
                counts[j] += 1
                if not reused:
                    # the popped node's storage becomes the first successor
                    target = node
                    reused = True
                else:
                    target = self._arena.new_conf()
                self._arena.store(target, counts)
                heapq.heappush(self._pq, (-self._combined_lprob(counts), target))
                counts[j] -= 1
            if counts[j] > 0:
                break

        self._current_conf = counts
        return True

    def lprob(self) -> float:
        return self._current_lprob

    def mass(self) -> float:
        return self._current_mass

    def prob(self) -> float:
        return self._current_prob

    def get_conf_signature(self, space=None) -> np.ndarray:
        if self._current_conf is None:
            raise RuntimeError("Call advance() first.")
        if space is None:
            space = np.empty(self.all_dim, dtype=int)
        pos = 0
        for mr, c in zip(self._marginal_results, self._current_conf):
            conf = mr.confs[c]
            space[pos:pos + len(conf)] = conf
            pos += len(conf)
        return space

    @property
    def frontier_size(self) -> int:
        return len(self._pq)

    @property
    def arena_size(self) -> int:
        return len(self._arena)
