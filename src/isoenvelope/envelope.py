# envelope.py
from __future__ import annotations

import math
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import DEFAULT_T_PROB_HINT, NORMALIZATION_TOLERANCE
from .iso import Iso
from .tabulator import LayeredTabulator, ThresholdTabulator


class FixedEnvelope:
    """
    Materialized isotopic envelope: parallel (mass, prob[, lprob, conf]) arrays.

    Parameters
    ----------
    masses, probs : array-like
        (N,) peak masses and probabilities.
    confs : (N, all_dim) int array, optional
        Isotopologue of every peak.
    all_dim : int
        Length of one configuration vector.
    lprobs : (N,) array, optional
        Natural log of ``probs``.
    masses_sorted, probs_sorted : bool
        Whether the arrays are already sorted by mass / by probability.
    total_prob : float
        Known total probability; NaN means "compute on demand".

    No ordering is guaranteed unless ``sort_by_mass`` or ``sort_by_prob`` has
    been called. Arithmetic and binning return envelopes without confs.
    """

    def __init__(
        self,
        masses: Optional[Sequence[float]] = None,
        probs: Optional[Sequence[float]] = None,
        confs: Optional[np.ndarray] = None,
        all_dim: int = 0,
        lprobs: Optional[Sequence[float]] = None,
        masses_sorted: bool = False,
        probs_sorted: bool = False,
        total_prob: float = math.nan,
    ) -> None:
        self._masses = np.asarray(masses if masses is not None else [], dtype=float)
        self._probs = np.asarray(probs if probs is not None else [], dtype=float)
        if self._masses.shape != self._probs.shape or self._masses.ndim != 1:
            raise ValueError(f"masses {self._masses.shape} and probs {self._probs.shape} "
                             "must be 1-D arrays of equal length.")
        n = self._masses.size
        self._confs_no = int(n)

        self._lprobs = None if lprobs is None else np.asarray(lprobs, dtype=float)
        if self._lprobs is not None and self._lprobs.shape != (n,):
            raise ValueError("lprobs must match masses in length.")

        self.all_dim = int(all_dim)
        self._confs = None if confs is None else np.asarray(confs, dtype=int).reshape(n, self.all_dim)

        self.sorted_by_mass = bool(masses_sorted)
        self.sorted_by_prob = bool(probs_sorted)
        self._total_prob = float(total_prob)

    # ---- accessors ----
    @property
    def confs_no(self) -> int:
        return self._confs_no

    def __len__(self) -> int:
        return self.confs_no

    @property
    def masses(self) -> np.ndarray:
        return self._masses

    @property
    def probs(self) -> np.ndarray:
        return self._probs

    @property
    def lprobs(self) -> Optional[np.ndarray]:
        return self._lprobs

    @property
    def confs(self) -> Optional[np.ndarray]:
        return self._confs

    def mass(self, i: int) -> float:
        return float(self._held("masses")[i])

    def prob(self, i: int) -> float:
        return float(self._held("probs")[i])

    def conf(self, i: int) -> np.ndarray:
        if self._confs is None:
            raise ValueError("This envelope was built without configurations.")
        return self._confs[i]

    # ---- ownership transfer ----
    def _held(self, name: str) -> np.ndarray:
        arr = getattr(self, "_" + name)
        if arr is None:
            raise ValueError(f"The {name} array has been released from this envelope.")
        return arr

    def release_masses(self) -> np.ndarray:
        ret, self._masses = self._masses, None
        return ret

    def release_probs(self) -> np.ndarray:
        ret, self._probs = self._probs, None
        return ret

    def release_lprobs(self) -> Optional[np.ndarray]:
        ret, self._lprobs = self._lprobs, None
        return ret

    def release_confs(self) -> Optional[np.ndarray]:
        ret, self._confs = self._confs, None
        return ret

    # ---- ordering ----
    def _sort_by(self, order: np.ndarray) -> None:
        if self._masses is not None:
            self._masses = self._masses[order]
        if self._probs is not None:
            self._probs = self._probs[order]
        if self._lprobs is not None:
            self._lprobs = self._lprobs[order]
        if self._confs is not None:
            self._confs = self._confs[order]

    def sort_by_mass(self) -> None:
        if self.sorted_by_mass:
            return
        self._sort_by(np.argsort(self._held("masses"), kind="stable"))
        self.sorted_by_mass = True
        self.sorted_by_prob = False

    def sort_by_prob(self) -> None:
        """Sort by increasing probability."""
        if self.sorted_by_prob:
            return
        self._sort_by(np.argsort(self._held("probs"), kind="stable"))
        self.sorted_by_prob = True
        self.sorted_by_mass = False

    # ---- scaling ----
    def get_total_prob(self) -> float:
        if math.isnan(self._total_prob):
            self._total_prob = float(self._held("probs").sum())
        return self._total_prob

    def scale(self, factor: float) -> None:
        self._probs = self._held("probs") * factor
        if self._lprobs is not None:
            if factor > 0.0:
                self._lprobs = self._lprobs + math.log(factor)
            else:
                self._lprobs = np.full_like(self._lprobs, -np.inf)
        self._total_prob *= factor

    def normalize(self) -> None:
        tp = self.get_total_prob()
        if not tp > 0.0:
            raise ValueError("Cannot normalize an envelope with zero total probability.")
        if tp != 1.0:
            self.scale(1.0 / tp)
            self._total_prob = 1.0

    # ---- statistics ----
    def empiric_average_mass(self) -> float:
        masses, probs = self._held("masses"), self._held("probs")
        return float(np.dot(masses, probs) / self.get_total_prob())

    def empiric_variance(self) -> float:
        masses, probs = self._held("masses"), self._held("probs")
        avg = self.empiric_average_mass()
        return float(np.dot((masses - avg) ** 2, probs) / self.get_total_prob())

    # ---- arithmetic ----
    def __add__(self, other: "FixedEnvelope") -> "FixedEnvelope":
        """Union of both peak lists (additive mixing of two signals)."""
        return FixedEnvelope(
            np.concatenate([self._held("masses"), other._held("masses")]),
            np.concatenate([self._held("probs"), other._held("probs")]),
        )

    def __mul__(self, other: "FixedEnvelope") -> "FixedEnvelope":
        """Joint envelope of two independent sub-molecules: masses add, probabilities multiply."""
        masses = (self._held("masses")[:, None] + other._held("masses")[None, :]).ravel()
        probs = (self._held("probs")[:, None] * other._held("probs")[None, :]).ravel()
        return FixedEnvelope(masses, probs)

    @staticmethod
    def linear_combination(envelopes: Sequence["FixedEnvelope"], intensities: Sequence[float]) -> "FixedEnvelope":
        """Mixture of `envelopes` weighted by non-negative `intensities`."""
        if len(envelopes) != len(intensities):
            raise ValueError(f"Got {len(envelopes)} envelopes but {len(intensities)} intensities.")
        weights = np.asarray(intensities, dtype=float)
        if np.any(weights < 0.0):
            raise ValueError("Linear combination weights must be non-negative.")
        if not envelopes:
            return FixedEnvelope()
        return FixedEnvelope(
            np.concatenate([e._held("masses") for e in envelopes]),
            np.concatenate([e._held("probs") * w for e, w in zip(envelopes, weights)]),
        )

    # ---- binning ----
    def bin(self, bin_width: float = 1.0, middle: float = 0.0) -> "FixedEnvelope":
        """
        Sum probabilities within fixed-width bins centred at ``middle + k * bin_width``.
        A width of 0 merges peaks with identical masses.
        """
        if self.confs_no == 0:
            return FixedEnvelope()
        if bin_width == 0.0:
            keys = self._held("masses")
        else:
            keys = np.floor((self._held("masses") - middle) / bin_width + 0.5) * bin_width + middle
        centres, inverse = np.unique(keys, return_inverse=True)
        probs = np.bincount(inverse.ravel(), weights=self._held("probs"), minlength=centres.size)
        return FixedEnvelope(centres, probs, masses_sorted=True)

    # ---- optimal transport ----
    def _check_comparable(self, other: "FixedEnvelope") -> None:
        tp, otp = self.get_total_prob(), other.get_total_prob()
        if tp * (1.0 - NORMALIZATION_TOLERANCE) > otp or otp > tp * (1.0 + NORMALIZATION_TOLERANCE):
            raise ValueError("Spectra must be normalized before computing Wasserstein Distance")

    def _transport_sweep(self, other: "FixedEnvelope") -> tuple:
        """Merged mass axis and the signed cumulative prob difference on each gap."""
        self.sort_by_mass()
        other.sort_by_mass()
        masses = np.concatenate([self._held("masses"), other._held("masses")])
        flow = np.concatenate([self._held("probs"), -other._held("probs")])
        order = np.argsort(masses, kind="stable")
        masses, flow = masses[order], flow[order]
        return np.diff(masses), np.cumsum(flow)[:-1]

    def wasserstein_distance(self, other: "FixedEnvelope") -> float:
        """1-D earth mover's distance; sorts both envelopes by mass."""
        self._check_comparable(other)
        if self.confs_no == 0 or other.confs_no == 0:
            return 0.0
        gaps, acc = self._transport_sweep(other)
        return float(np.sum(gaps * np.abs(acc)))

    def oriented_wasserstein_distance(self, other: "FixedEnvelope") -> float:
        """Signed variant: positive when `other` lies at heavier masses than self."""
        self._check_comparable(other)
        if self.confs_no == 0 or other.confs_no == 0:
            return 0.0
        gaps, acc = self._transport_sweep(other)
        return float(np.sum(gaps * acc))

    # ---- export ----
    def to_dataframe(self) -> pd.DataFrame:
        """One row per peak: mass, prob, optional lprob and one column per isotope count."""
        df = pd.DataFrame({"mass": self._held("masses"), "prob": self._held("probs")})
        if self._lprobs is not None:
            df["lprob"] = self._lprobs
        if self._confs is not None:
            for jj in range(self.all_dim):
                df[f"iso_{jj}"] = self._confs[:, jj]
        return df

    def __repr__(self) -> str:
        return f"{type(self).__name__}(confs_no={self.confs_no}, all_dim={self.all_dim})"


class ThresholdFixedEnvelope(FixedEnvelope):
    """Envelope of all configurations with probability >= threshold."""

    def __init__(
        self,
        iso: Union[Iso, str],
        threshold: float,
        absolute: bool = True,
        get_confs: bool = False,
        get_lprobs: bool = False,
        reorder_marginals: bool = True,
    ) -> None:
        tab = ThresholdTabulator(iso, threshold, absolute, get_masses=True, get_probs=True,
                                 get_lprobs=get_lprobs, get_confs=get_confs,
                                 reorder_marginals=reorder_marginals)
        super().__init__(tab.release_masses(), tab.release_probs(), tab.release_confs(),
                         all_dim=tab.all_dim, lprobs=tab.release_lprobs())
        self.threshold = threshold
        self.absolute = absolute


class TotalProbFixedEnvelope(FixedEnvelope):
    """Envelope covering at least `target_total_prob`; smallest such set if `optimize`."""

    def __init__(
        self,
        iso: Union[Iso, str],
        target_total_prob: float,
        optimize: bool = True,
        get_confs: bool = False,
        get_lprobs: bool = False,
        rng: Optional[np.random.Generator] = None,
        deterministic_pivot: bool = False,
        reorder_marginals: bool = True,
        t_prob_hint: float = DEFAULT_T_PROB_HINT,
    ) -> None:
        tab = LayeredTabulator(iso, target_total_prob, optimize, get_masses=True, get_probs=True,
                               get_lprobs=get_lprobs, get_confs=get_confs,
                               rng=rng, deterministic_pivot=deterministic_pivot,
                               reorder_marginals=reorder_marginals, t_prob_hint=t_prob_hint)
        masses = tab.release_masses()
        probs = tab.release_probs()
        super().__init__(masses, probs, tab.release_confs(), all_dim=tab.all_dim,
                         lprobs=tab.release_lprobs())
        self.target_total_prob = tab.target_total_prob
        self.optimize = optimize
