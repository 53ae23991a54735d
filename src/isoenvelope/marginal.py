# marginal.py
from __future__ import annotations

import heapq
import logging
import math
from typing import Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np
from scipy.special import gammaln

logger = logging.getLogger(__name__)

Conf = Tuple[int, ...]

NEG_INF = float("-inf")


# -----------------------------------------------------------------------------
# Utility helpers
# -----------------------------------------------------------------------------
def _initial_configuration(atom_cnt: int, probs: np.ndarray) -> List[int]:
    """Rounded-up expected counts, corrected so that they sum to atom_cnt."""
    res = [int(atom_cnt * p) + 1 if p > 0.0 else 0 for p in probs]
    diff = atom_cnt - sum(res)

    if diff > 0:
        res[int(np.argmax(probs))] += diff
    elif diff < 0:
        diff = -diff
        i = 0
        while diff > 0:
            coord_diff = res[i] - diff
            if coord_diff >= 0:
                res[i] -= diff
                diff = 0
            else:
                res[i] = 0
                i += 1
                diff = -coord_diff
    return res


# -----------------------------------------------------------------------------
# Base marginal
# -----------------------------------------------------------------------------
class Marginal:
    """
    Multinomial distribution of isotope counts for a single element.

    Parameters
    ----------
    masses : Sequence[float]
        (I,) isotope masses.
    probs : Sequence[float]
        (I,) isotope natural abundances.
    atom_cnt : int
        Number of atoms of the element in the molecule.
    mode_conf : tuple[int, ...] | None
        Known mode configuration; skips the hill climb when given.
    """

    def __init__(
        self,
        masses: Sequence[float],
        probs: Sequence[float],
        atom_cnt: int,
        mode_conf: Optional[Conf] = None,
    ) -> None:
        masses = np.asarray(masses, dtype=float)
        probs = np.asarray(probs, dtype=float)
        if masses.ndim != 1 or masses.size == 0:
            raise ValueError("An element needs at least one isotope.")
        if masses.size != probs.size:
            raise ValueError(
                f"Got {masses.size} isotope masses but {probs.size} probabilities."
            )
        if np.any(probs < 0.0) or not probs.sum() > 0.0:
            raise ValueError("Isotope probabilities must be non-negative with a positive sum.")
        if int(atom_cnt) != atom_cnt:
            raise ValueError(f"Atom count must be an integer; got {atom_cnt}")
        if int(atom_cnt) < 0:
            raise ValueError(f"Atom count must be non-negative; got {atom_cnt}")

        self.isotope_no = int(masses.size)
        self.atom_cnt = int(atom_cnt)
        self.atom_masses = masses
        self.atom_probs = probs
        with np.errstate(divide="ignore"):
            self.atom_lprobs = np.log(probs)

        # plain-float copies for the scalar hot paths
        self._masses_f = [float(m) for m in masses]
        self._lprobs_f = [float(lp) for lp in self.atom_lprobs]
        self._minus_lfact = (-gammaln(np.arange(self.atom_cnt + 1, dtype=float) + 1.0)).tolist()
        self._lfact_n = -self._minus_lfact[self.atom_cnt]

        if mode_conf is None:
            mode_conf = self._find_mode()
        self.mode_conf: Conf = tuple(mode_conf)
        self.mode_lprob = self.log_prob(self.mode_conf)
        self.mode_mass = self.mass(self.mode_conf)

    # ---- per-configuration quantities ----
    def log_prob(self, conf: Sequence[int]) -> float:
        lp = self._lfact_n
        for cnt, alp in zip(conf, self._lprobs_f):
            if cnt:
                lp += cnt * alp + self._minus_lfact[cnt]
        return lp

    def mass(self, conf: Sequence[int]) -> float:
        return sum(cnt * m for cnt, m in zip(conf, self._masses_f))

    def neighbours(self, conf: Conf) -> Iterator[Conf]:
        """Configurations reachable by moving a single atom to another isotope."""
        k = self.isotope_no
        for ii in range(k):
            if conf[ii] == 0:
                continue
            for jj in range(k):
                if jj == ii:
                    continue
                nb = list(conf)
                nb[ii] -= 1
                nb[jj] += 1
                yield tuple(nb)

    def _find_mode(self) -> Conf:
        res = _initial_configuration(self.atom_cnt, self.atom_probs)
        best = self.log_prob(res)
        modified = True
        while modified:
            modified = False
            for ii in range(self.isotope_no):
                for jj in range(self.isotope_no):
                    if ii == jj or res[ii] == 0:
                        continue
                    res[ii] -= 1
                    res[jj] += 1
                    lp = self.log_prob(res)
                    if lp > best:
                        best = lp
                        modified = True
                    else:
                        res[ii] += 1
                        res[jj] -= 1
        return tuple(res)

    # ---- whole-element summaries ----
    @property
    def smallest_lprob(self) -> float:
        """Log-probability of the least likely configuration (all atoms on the rarest isotope)."""
        finite = self.atom_lprobs[np.isfinite(self.atom_lprobs)]
        return self.atom_cnt * float(finite.min())

    @property
    def lightest_conf_mass(self) -> float:
        return self.atom_cnt * float(self.atom_masses.min())

    @property
    def heaviest_conf_mass(self) -> float:
        return self.atom_cnt * float(self.atom_masses.max())

    @property
    def monoisotopic_conf_mass(self) -> float:
        return self.atom_cnt * float(self.atom_masses[np.argmax(self.atom_probs)])

    @property
    def theoretical_average_mass(self) -> float:
        return self.atom_cnt * float(np.dot(self.atom_masses, self.atom_probs))

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(isotopes={self.isotope_no}, atoms={self.atom_cnt}, "
                f"mode_lprob={self.mode_lprob:.6g})")


# -----------------------------------------------------------------------------
# Lazily extended, globally ordered marginal (used by the ordered generator)
# -----------------------------------------------------------------------------
class MarginalTrek(Marginal):
    """
    Enumerates the element's configurations in non-increasing probability,
    one at a time, by expanding a frontier outwards from the mode.
    """

    def __init__(self, marginal: Marginal) -> None:
        super().__init__(marginal.atom_masses, marginal.atom_probs, marginal.atom_cnt,
                         mode_conf=marginal.mode_conf)
        self._visited: Set[Conf] = {self.mode_conf}
        self._seq = 0
        self._pq: List[Tuple[float, int, Conf]] = [(-self.mode_lprob, self._seq, self.mode_conf)]

        self.conf_lprobs: List[float] = []
        self.conf_masses: List[float] = []
        self.confs: List[Conf] = []

        self._add_next_conf()

    def _add_next_conf(self) -> bool:
        if not self._pq:
            return False
        neg_lp, _, conf = heapq.heappop(self._pq)
        self.conf_lprobs.append(-neg_lp)
        self.conf_masses.append(self.mass(conf))
        self.confs.append(conf)

        for nb in self.neighbours(conf):
            if nb in self._visited:
                continue
            self._visited.add(nb)
            lp = self.log_prob(nb)
            if lp == NEG_INF:
                continue
            self._seq += 1
            heapq.heappush(self._pq, (-lp, self._seq, nb))
        return True

    def reach_configuration_idx(self, idx: int) -> bool:
        """True iff the idx-th most probable configuration exists (extends the cache)."""
        while len(self.confs) <= idx:
            if not self._add_next_conf():
                return False
        return True

    @property
    def no_confs(self) -> int:
        return len(self.confs)


# -----------------------------------------------------------------------------
# Fixed-cutoff marginal (used by the threshold generator)
# -----------------------------------------------------------------------------
class PrecalculatedMarginal(Marginal):
    """
    All configurations with log-probability >= l_cutoff, sorted decreasing.

    ``lprobs`` carries one extra ``-inf`` entry at the end so that cursors can
    step one past the last configuration without a bounds check.
    """

    def __init__(self, marginal: Marginal, l_cutoff: float, sort: bool = True) -> None:
        super().__init__(marginal.atom_masses, marginal.atom_probs, marginal.atom_cnt,
                         mode_conf=marginal.mode_conf)
        self.l_cutoff = float(l_cutoff)

        accepted: List[Tuple[float, Conf]] = []
        if self.mode_lprob >= self.l_cutoff:
            visited: Set[Conf] = {self.mode_conf}
            stack = [self.mode_conf]
            while stack:
                conf = stack.pop()
                lp = self.log_prob(conf)
                if lp < self.l_cutoff:
                    continue
                accepted.append((lp, conf))
                for nb in self.neighbours(conf):
                    if nb not in visited:
                        visited.add(nb)
                        stack.append(nb)

        if sort:
            accepted.sort(key=lambda t: (-t[0], t[1]))

        self.confs: List[Conf] = [c for _, c in accepted]
        self.lprobs: List[float] = [lp for lp, _ in accepted]
        self.masses: List[float] = [self.mass(c) for c in self.confs]
        self.probs: List[float] = [math.exp(lp) for lp in self.lprobs]
        self.lprobs.append(NEG_INF)

        logger.debug("Precalculated %d configurations above %.6g (%d isotopes, %d atoms)",
                     len(self.confs), self.l_cutoff, self.isotope_no, self.atom_cnt)

    @property
    def no_confs(self) -> int:
        return len(self.confs)

    def in_range(self, idx: int) -> bool:
        return 0 <= idx < len(self.confs)


# -----------------------------------------------------------------------------
# Extendable marginal (used by the layered generator)
# -----------------------------------------------------------------------------
class LayeredMarginal(Marginal):
    """
    Configurations above a threshold that can be lowered repeatedly.

    Each ``extend`` appends the configurations between the old and the new
    threshold, so the cached lists stay sorted decreasing and earlier indices
    never move. ``lprobs`` ends with a ``-inf`` sentinel.
    """

    def __init__(self, marginal: Marginal) -> None:
        super().__init__(marginal.atom_masses, marginal.atom_probs, marginal.atom_cnt,
                         mode_conf=marginal.mode_conf)
        self.current_threshold = math.inf
        self._visited: Set[Conf] = {self.mode_conf}
        self._fringe: List[Tuple[float, Conf]] = [(self.mode_lprob, self.mode_conf)]

        self.confs: List[Conf] = []
        self.lprobs: List[float] = [NEG_INF]
        self.masses: List[float] = []
        self.probs: List[float] = []

    def extend(self, new_threshold: float) -> None:
        new_fringe: List[Tuple[float, Conf]] = []
        accepted: List[Tuple[float, Conf]] = []
        stack = self._fringe

        while stack:
            lp, conf = stack.pop()
            if lp < new_threshold:
                new_fringe.append((lp, conf))
                continue
            accepted.append((lp, conf))
            for nb in self.neighbours(conf):
                if nb not in self._visited:
                    self._visited.add(nb)
                    stack.append((self.log_prob(nb), nb))

        self._fringe = new_fringe
        self.current_threshold = new_threshold

        accepted.sort(key=lambda t: (-t[0], t[1]))
        self.lprobs.pop()
        for lp, conf in accepted:
            self.confs.append(conf)
            self.lprobs.append(lp)
            self.masses.append(self.mass(conf))
            self.probs.append(math.exp(lp))
        self.lprobs.append(NEG_INF)

    @property
    def no_confs(self) -> int:
        return len(self.confs)


__all__ = [
    "Conf",
    "Marginal",
    "MarginalTrek",
    "PrecalculatedMarginal",
    "LayeredMarginal",
]
