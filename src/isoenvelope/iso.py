# iso.py
from __future__ import annotations

import logging
import re
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
from molmass import ELEMENTS

from .marginal import Marginal

logger = logging.getLogger(__name__)

_FORMULA_TOKEN = re.compile(r"([A-Za-z]+)([0-9]+)")

# symbol -> (masses, abundances); filled on first use
_isotope_table: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}


class InvalidFormulaError(ValueError):
    """Raised for malformed formula text or unknown element symbols."""


# -----------------------------------------------------------------------------
# Element table (molmass)
# -----------------------------------------------------------------------------
def _build_isotope_table() -> None:
    """Per-element isotope masses and natural abundances from molmass.ELEMENTS."""
    if _isotope_table:
        return
    for element in ELEMENTS:
        pairs = [(iso.mass, iso.abundance)
                 for _, iso in sorted(element.isotopes.items())
                 if iso.abundance > 0.0]
        if not pairs:
            continue
        arr = np.array(pairs, dtype=float)
        _isotope_table[element.symbol] = (arr[:, 0], arr[:, 1])


def element_isotopes(symbol: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return (masses, probabilities) of the naturally occurring isotopes of `symbol`.

    Raises InvalidFormulaError for symbols without natural isotopes.
    """
    _build_isotope_table()
    try:
        masses, probs = _isotope_table[symbol]
    except KeyError:
        raise InvalidFormulaError(f"Invalid formula: unknown element symbol {symbol!r}") from None
    return masses.copy(), probs.copy()


def parse_formula(formula: str) -> List[Tuple[str, int]]:
    """
    Split a compact formula such as ``C6H12O6`` into (symbol, count) pairs.

    Every element must carry an explicit count (``H2O1``, not ``H2O``) and
    only letters and digits are allowed.
    """
    if not formula:
        raise InvalidFormulaError("Invalid formula: can't be empty")
    if not formula[-1].isdigit():
        raise InvalidFormulaError(
            "Invalid formula: every element must be followed by a number - "
            "write H2O1 and not H2O for water"
        )
    if not all(ch.isascii() and ch.isalnum() for ch in formula):
        raise InvalidFormulaError("Invalid formula: contains invalid (non-digit, non-alpha) character")

    pairs: List[Tuple[str, int]] = []
    position = 0
    for match in _FORMULA_TOKEN.finditer(formula):
        if match.start() != position:
            break
        pairs.append((match.group(1), int(match.group(2))))
        position = match.end()
    if position != len(formula):
        raise InvalidFormulaError(f"Invalid formula: {formula!r}")
    return pairs


# -----------------------------------------------------------------------------
# Molecule descriptor
# -----------------------------------------------------------------------------
class Iso:
    """
    Molecule described element by element.

    Parameters
    ----------
    atom_counts : Sequence[int]
        (E,) number of atoms of each element.
    isotope_masses : Sequence[Sequence[float]]
        Per element, the isotope masses.
    isotope_probabilities : Sequence[Sequence[float]]
        Per element, the isotope natural abundances.

    A descriptor is consumed by the generator built from it. Afterwards it is
    *disowned* and every accessor raises RuntimeError; use ``copy()`` to feed
    several generators from one molecule.
    """

    def __init__(
        self,
        atom_counts: Sequence[int] = (),
        isotope_masses: Sequence[Sequence[float]] = (),
        isotope_probabilities: Sequence[Sequence[float]] = (),
    ) -> None:
        if not (len(atom_counts) == len(isotope_masses) == len(isotope_probabilities)):
            raise ValueError("atom_counts, isotope_masses and isotope_probabilities "
                             "must describe the same number of elements.")
        self.disowned = False
        self.isotope_numbers: List[int] = []
        self.atom_counts: List[int] = []
        self.marginals: List[Marginal] = []
        self.all_dim = 0
        self._mode_lprob = 0.0
        for cnt, masses, probs in zip(atom_counts, isotope_masses, isotope_probabilities):
            self.add_element(cnt, masses, probs)

    @classmethod
    def from_formula(cls, formula: str) -> "Iso":
        """Build a descriptor from a formula like ``C100H202O1``."""
        iso = cls()
        for symbol, count in parse_formula(formula):
            masses, probs = element_isotopes(symbol)
            iso.add_element(count, masses, probs)
        logger.debug("Parsed formula %s into %d elements (all_dim=%d)",
                     formula, iso.dim_number, iso.all_dim)
        return iso

    def add_element(self, atom_count: int, isotope_masses: Sequence[float],
                    isotope_probabilities: Sequence[float]) -> None:
        self._check_owned()
        m = Marginal(isotope_masses, isotope_probabilities, atom_count)
        self._mode_lprob += m.mode_lprob
        self.isotope_numbers.append(m.isotope_no)
        self.atom_counts.append(m.atom_cnt)
        self.marginals.append(m)
        self.all_dim += m.isotope_no

    # ---- ownership ----
    def _check_owned(self) -> None:
        if self.disowned:
            raise RuntimeError("This Iso has been moved into a generator and can no longer be used.")

    def _take_over(self, other: "Iso") -> None:
        """Move `other`'s contents into self; `other` becomes disowned."""
        other._check_owned()
        self.disowned = False
        self.isotope_numbers = other.isotope_numbers
        self.atom_counts = other.atom_counts
        self.marginals = other.marginals
        self.all_dim = other.all_dim
        self._mode_lprob = other._mode_lprob

        other.disowned = True
        other.isotope_numbers = []
        other.atom_counts = []
        other.marginals = []
        other.all_dim = 0

    def copy(self) -> "Iso":
        """Independent descriptor sharing the (immutable) marginals."""
        self._check_owned()
        new = Iso()
        new.isotope_numbers = list(self.isotope_numbers)
        new.atom_counts = list(self.atom_counts)
        new.marginals = list(self.marginals)
        new.all_dim = self.all_dim
        new._mode_lprob = self._mode_lprob
        return new

    # ---- derived quantities ----
    @property
    def dim_number(self) -> int:
        return len(self.marginals)

    @property
    def mode_lprob(self) -> float:
        self._check_owned()
        return self._mode_lprob

    def lightest_peak_mass(self) -> float:
        self._check_owned()
        return sum(m.lightest_conf_mass for m in self.marginals)

    def heaviest_peak_mass(self) -> float:
        self._check_owned()
        return sum(m.heaviest_conf_mass for m in self.marginals)

    def monoisotopic_peak_mass(self) -> float:
        self._check_owned()
        return sum(m.monoisotopic_conf_mass for m in self.marginals)

    def mode_mass(self) -> float:
        self._check_owned()
        return sum(m.mode_mass for m in self.marginals)

    def theoretical_average_mass(self) -> float:
        self._check_owned()
        return sum(m.theoretical_average_mass for m in self.marginals)

    def unlikeliest_peak_lprob(self) -> float:
        self._check_owned()
        return sum(m.smallest_lprob for m in self.marginals)

    def __repr__(self) -> str:
        if self.disowned:
            return "Iso(<disowned>)"
        return f"Iso(elements={self.dim_number}, all_dim={self.all_dim}, mode_lprob={self._mode_lprob:.6g})"


def as_iso(molecule: Union[Iso, str]) -> Iso:
    """Accept either a descriptor or a formula string."""
    if isinstance(molecule, Iso):
        return molecule
    if isinstance(molecule, str):
        return Iso.from_formula(molecule)
    raise TypeError(f"Expected an Iso or a formula string; got {type(molecule).__name__}")
