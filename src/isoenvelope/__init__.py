"""
Fine isotopic structure of molecules.

Enumerates the probability-relevant isotopologues of a molecule without
materializing the full joint distribution: everything above a probability
threshold, a smallest set reaching a target coverage, or the whole space in
decreasing probability order.
"""
from .iso import InvalidFormulaError, Iso, element_isotopes, parse_formula
from .marginal import LayeredMarginal, Marginal, MarginalTrek, PrecalculatedMarginal
from .generators import (
    ConfArena,
    IsoGenerator,
    IsoLayeredGenerator,
    IsoOrderedGenerator,
    IsoThresholdGenerator,
)
from .tabulator import LayeredTabulator, Tabulator, ThresholdTabulator
from .envelope import FixedEnvelope, ThresholdFixedEnvelope, TotalProbFixedEnvelope
from .io import available_arrays_in_npz, load_envelope_npz, save_envelope_npz
from .logging_config import setup_logging

__version__ = "0.1.0"

__all__ = [
    "InvalidFormulaError",
    "Iso",
    "element_isotopes",
    "parse_formula",
    "Marginal",
    "MarginalTrek",
    "PrecalculatedMarginal",
    "LayeredMarginal",
    "ConfArena",
    "IsoGenerator",
    "IsoThresholdGenerator",
    "IsoLayeredGenerator",
    "IsoOrderedGenerator",
    "Tabulator",
    "ThresholdTabulator",
    "LayeredTabulator",
    "FixedEnvelope",
    "ThresholdFixedEnvelope",
    "TotalProbFixedEnvelope",
    "available_arrays_in_npz",
    "load_envelope_npz",
    "save_envelope_npz",
    "setup_logging",
]
