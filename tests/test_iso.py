"""
Tests for isoenvelope/iso.py

Covers:
  1. parse_formula: accepted forms and every rejection message
  2. element_isotopes: values come from the molmass element table
  3. Iso: construction, mass summaries, ownership transfer and copy
"""

from __future__ import annotations

import math
import re

import numpy as np
import pytest

from isoenvelope import IsoThresholdGenerator
from isoenvelope.iso import InvalidFormulaError, Iso, as_iso, element_isotopes, parse_formula
from molecules import F_MASS, P_MASS, make_toy_iso


# ── 1. Formula parsing ───────────────────────────────────────────────────────


class TestParseFormula:

    def test_simple_formula(self):
        assert parse_formula("C6H12O6") == [("C", 6), ("H", 12), ("O", 6)]

    def test_two_letter_symbols(self):
        assert parse_formula("Na1Cl1") == [("Na", 1), ("Cl", 1)]

    def test_repeated_element_kept_separately(self):
        assert parse_formula("C1H4C2") == [("C", 1), ("H", 4), ("C", 2)]

    @pytest.mark.parametrize(
        "formula, message",
        [
            ("", "can't be empty"),
            ("H2O", "every element must be followed by a number"),
            ("H2-O1", "invalid (non-digit, non-alpha) character"),
            ("1C2", "Invalid formula"),
        ],
    )
    def test_malformed(self, formula, message):
        with pytest.raises(InvalidFormulaError, match=re.escape(message)):
            parse_formula(formula)

    def test_unknown_symbol(self):
        with pytest.raises(InvalidFormulaError, match="unknown element"):
            Iso.from_formula("Xx1")

    def test_invalid_formula_is_a_value_error(self):
        with pytest.raises(ValueError):
            Iso.from_formula("H2O")


# ── 2. Element table ─────────────────────────────────────────────────────────


class TestElementIsotopes:

    def test_carbon(self):
        masses, probs = element_isotopes("C")
        assert masses.size == 2
        assert masses[0] == pytest.approx(12.0)
        assert probs.sum() == pytest.approx(1.0, abs=1e-3)
        assert probs[0] > 0.98

    def test_masses_increase(self):
        masses, _ = element_isotopes("O")
        assert np.all(np.diff(masses) > 0)

    def test_returns_copies(self):
        masses, _ = element_isotopes("H")
        masses[0] = -1.0
        assert element_isotopes("H")[0][0] > 0


# ── 3. Iso descriptor ────────────────────────────────────────────────────────


class TestIso:

    def test_water_from_formula(self):
        iso = Iso.from_formula("H2O1")
        assert iso.dim_number == 2
        assert iso.atom_counts == [2, 1]
        assert iso.isotope_numbers == [2, 3]
        assert iso.all_dim == 5
        assert iso.monoisotopic_peak_mass() == pytest.approx(18.0106, abs=1e-3)

    def test_toy_mass_summaries(self):
        iso = make_toy_iso()
        assert iso.lightest_peak_mass() == pytest.approx(12.0)
        assert iso.heaviest_peak_mass() == pytest.approx(15.0)
        assert iso.monoisotopic_peak_mass() == pytest.approx(12.0)
        assert iso.mode_mass() == pytest.approx(12.0)
        assert iso.theoretical_average_mass() == pytest.approx(2 * 1.1 + 10.2)
        assert iso.mode_lprob == pytest.approx(math.log(0.648))
        assert iso.unlikeliest_peak_lprob() == pytest.approx(math.log(0.002))

    def test_single_isotope_molecule(self, monoisotopic_iso):
        assert monoisotopic_iso.mode_lprob == pytest.approx(0.0)
        assert monoisotopic_iso.mode_mass() == pytest.approx(5 * F_MASS + 2 * P_MASS)

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError):
            Iso([1, 2], [[1.0]], [[1.0]])

    def test_generator_disowns_source(self, toy_iso):
        IsoThresholdGenerator(toy_iso, 0.01)
        assert toy_iso.disowned
        with pytest.raises(RuntimeError):
            toy_iso.mode_mass()
        with pytest.raises(RuntimeError):
            IsoThresholdGenerator(toy_iso, 0.01)

    def test_copy_survives_consumption(self, toy_iso):
        twin = toy_iso.copy()
        IsoThresholdGenerator(toy_iso, 0.01)
        assert not twin.disowned
        assert twin.mode_mass() == pytest.approx(12.0)
        assert IsoThresholdGenerator(twin, 0.0).count_confs() == 6

    def test_as_iso(self, toy_iso):
        assert as_iso(toy_iso) is toy_iso
        assert as_iso("C1").dim_number == 1
        with pytest.raises(TypeError):
            as_iso(42)
