from __future__ import annotations
import json
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .envelope import FixedEnvelope

FORMAT_VERSION = 1

# envelope arrays in storage order
_ARRAY_NAMES = ("masses", "probs", "lprobs", "confs")


def _meta_array(meta: Dict[str, Any] | None) -> np.ndarray:
    """1-element unicode array → avoids object dtype/pickle on load."""
    return np.array([json.dumps(meta or {})], dtype="U")


def available_arrays_in_npz(path: str) -> List[str]:
    """Names of the envelope arrays stored in `path` (empty arrays are skipped)."""
    with np.load(path, allow_pickle=False) as npz:
        return [nm for nm in _ARRAY_NAMES
                if nm in npz.files and np.array(npz[nm]).size > 0]


def save_envelope_npz(
    path: str,
    envelope: FixedEnvelope,
    *,
    compress: bool = True,
    meta: Dict[str, Any] | None = None,
) -> str:
    """
    Save an envelope's arrays plus a JSON metadata blob to a single .npz.

    Always saved
    ------------
    - masses, probs
    - meta_json (format version, all_dim, sort flags, user meta)

    Saved if available
    ------------------
    - lprobs, confs
    """
    info = dict(
        format_version=FORMAT_VERSION,
        all_dim=int(envelope.all_dim),
        sorted_by_mass=bool(envelope.sorted_by_mass),
        sorted_by_prob=bool(envelope.sorted_by_prob),
        user=meta or {},
    )
    payload = dict(
        masses=np.asarray(envelope.masses, dtype=float),
        probs=np.asarray(envelope.probs, dtype=float),
        meta_json=_meta_array(info),
    )
    if envelope.lprobs is not None:
        payload["lprobs"] = np.asarray(envelope.lprobs, dtype=float)
    if envelope.confs is not None:
        payload["confs"] = np.asarray(envelope.confs, dtype=int)

    (np.savez_compressed if compress else np.savez)(path, **payload)
    return path


def load_envelope_npz(path: str) -> Tuple[FixedEnvelope, Dict[str, Any]]:
    """
    Load an envelope saved by `save_envelope_npz`.

    Returns
    -------
    (FixedEnvelope, user_meta)
    """
    with np.load(path, allow_pickle=False) as npz:
        if "meta_json" not in npz.files:
            raise ValueError("NPZ missing 'meta_json'; not a compatible envelope save.")
        try:
            info = json.loads(str(npz["meta_json"][0]))
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse meta_json: {e}") from e

        for key in ("masses", "probs"):
            if key not in npz.files:
                raise ValueError(f"NPZ missing required array {key!r}.")
        masses = np.array(npz["masses"], dtype=float)
        probs = np.array(npz["probs"], dtype=float)

        def _maybe(key: str, dtype) -> Optional[np.ndarray]:
            return np.array(npz[key], dtype=dtype) if key in npz.files else None

        lprobs = _maybe("lprobs", float)
        confs = _maybe("confs", int)

    if masses.size != probs.size:
        raise ValueError(f"masses size {masses.size} vs probs size {probs.size} mismatch.")

    envelope = FixedEnvelope(
        masses, probs, confs,
        all_dim=int(info.get("all_dim", 0)),
        lprobs=lprobs,
        masses_sorted=bool(info.get("sorted_by_mass", False)),
        probs_sorted=bool(info.get("sorted_by_prob", False)),
    )
    return envelope, dict(info.get("user", {}))
