"""
Tests for isoenvelope/io.py: saving envelopes to .npz and reading them back.
"""

from __future__ import annotations

import numpy as np
import pytest

from isoenvelope import (
    FixedEnvelope,
    ThresholdFixedEnvelope,
    available_arrays_in_npz,
    load_envelope_npz,
    save_envelope_npz,
)


class TestNpzRoundTrip:

    def test_full_envelope(self, toy_iso, tmp_path):
        env = ThresholdFixedEnvelope(toy_iso, 0.0, get_confs=True, get_lprobs=True)
        env.sort_by_mass()
        path = str(tmp_path / "toy.npz")
        assert save_envelope_npz(path, env, meta={"formula": "toy"}) == path

        loaded, meta = load_envelope_npz(path)
        assert meta == {"formula": "toy"}
        assert loaded.all_dim == 4
        assert loaded.sorted_by_mass and not loaded.sorted_by_prob
        assert np.array_equal(loaded.masses, env.masses)
        assert np.array_equal(loaded.probs, env.probs)
        assert np.array_equal(loaded.lprobs, env.lprobs)
        assert np.array_equal(loaded.confs, env.confs)

    def test_optional_arrays_are_skipped(self, tmp_path):
        env = FixedEnvelope([1.0, 2.0], [0.25, 0.75])
        path = str(tmp_path / "plain.npz")
        save_envelope_npz(path, env, compress=False)
        assert available_arrays_in_npz(path) == ["masses", "probs"]

        loaded, meta = load_envelope_npz(path)
        assert meta == {}
        assert loaded.lprobs is None
        assert loaded.confs is None
        assert loaded.get_total_prob() == pytest.approx(1.0)

    def test_lists_stored_arrays(self, toy_iso, tmp_path):
        path = str(tmp_path / "confs.npz")
        save_envelope_npz(path, ThresholdFixedEnvelope(toy_iso, 0.05, get_confs=True))
        assert available_arrays_in_npz(path) == ["masses", "probs", "confs"]

    def test_lists_every_array_in_storage_order(self, tmp_path):
        path = str(tmp_path / "shuffled.npz")
        np.savez(path, confs=np.ones((1, 1)), meta_json=np.array(["{}"]), lprobs=np.zeros(1),
                 probs=np.ones(1), masses=np.ones(1), extra=np.ones(1))
        assert available_arrays_in_npz(path) == ["masses", "probs", "lprobs", "confs"]

    def test_empty_arrays_are_not_listed(self, tmp_path):
        path = str(tmp_path / "empty.npz")
        np.savez(path, masses=np.ones(2), probs=np.ones(2), lprobs=np.zeros(0))
        assert available_arrays_in_npz(path) == ["masses", "probs"]


class TestNpzErrors:

    def test_missing_meta(self, tmp_path):
        path = str(tmp_path / "foreign.npz")
        np.savez(path, masses=np.ones(2), probs=np.ones(2))
        with pytest.raises(ValueError, match="meta_json"):
            load_envelope_npz(path)

    def test_missing_probs(self, tmp_path):
        path = str(tmp_path / "partial.npz")
        np.savez(path, masses=np.ones(2), meta_json=np.array(["{}"]))
        with pytest.raises(ValueError, match="probs"):
            load_envelope_npz(path)
