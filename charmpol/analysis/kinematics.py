"""
Kinematics of a candidate under a given evaluation context.

For each (mass hypothesis, background rotation) pair the extractors
build the probe-daughter and parent momenta, the reconstructed mass,
the mass stored in the histograms and the rapidity. They work on a
whole chunk of candidates (an Awkward record array) at once and return
columnar NumPy arrays.
"""

from dataclasses import dataclass, fields

import numpy as np
import awkward as ak

from charmpol.analysis.channels import MassHypoLcToPKPi
from charmpol.analysis.physics import (
    MASS_DSTAR,
    MASS_KAON,
    MASS_LAMBDA_C,
    MASS_PION,
    MASS_PROTON,
    invariant_mass_from_prongs,
    rapidity,
    rotate_transverse,
    transverse_momentum,
)
from charmpol.analysis.selection import mass_hypo_mask


# value of the ML scores when no score is available
ML_SENTINEL = -1.0
N_ML_SCORES = 3


@dataclass(frozen=True)
class EvaluationContext:
    mass_hypo: int = 0
    rotation_id: int = 0
    rotation_angle: float = 0.0

    @property
    def is_rotated(self):
        return self.rotation_id > 0


@dataclass
class Evaluation:
    """
    Columnar kinematics of the candidates kept for one evaluation context.

    ``inv_mass`` is the reconstructed mass of the parent, used for the
    rest-frame boost. ``inv_mass_for_sparse`` is the mass stored in the
    histograms (the mass difference M(D*) - M(D0) for the D*).
    """

    px_dau: np.ndarray
    py_dau: np.ndarray
    pz_dau: np.ndarray
    mass_dau: np.ndarray
    px: np.ndarray
    py: np.ndarray
    pz: np.ndarray
    inv_mass: np.ndarray
    inv_mass_for_sparse: np.ndarray
    rapidity: np.ndarray
    ml_scores: np.ndarray
    is_rotated: np.ndarray

    def __len__(self):
        return len(self.px)

    @property
    def pt(self):
        # valid for both rotated and original candidates
        return transverse_momentum(self.px, self.py)

    def select(self, mask):
        return Evaluation(**{f.name: getattr(self, f.name)[mask] for f in fields(self)})

    def finite(self):
        """
        Drop rows with non-finite kinematic inputs (malformed candidates).
        """
        inputs = (
            self.px_dau, self.py_dau, self.pz_dau,
            self.px, self.py, self.pz,
            self.inv_mass, self.inv_mass_for_sparse, self.rapidity,
        )
        mask = np.logical_and.reduce([np.isfinite(a) for a in inputs])
        if mask.all():
            return self
        return self.select(mask)


def _column(candidates, field):
    return np.asarray(ak.to_numpy(candidates[field]), dtype=np.float64)


def _ml_scores(candidates, field, with_ml):
    """
    ML scores as an (n, 3) array.

    Rows whose score vector does not hold exactly three entries (e.g.
    no ML preselection was applied upstream) keep the sentinel value.
    """
    n = len(candidates)
    scores = np.full((n, N_ML_SCORES), ML_SENTINEL)
    if not with_ml or n == 0 or field not in candidates.fields:
        return scores

    ml = candidates[field]
    has_scores = ak.to_numpy(ak.num(ml, axis=1) == N_ML_SCORES)
    if not np.any(has_scores):
        return scores

    # shorter vectors are padded, longer ones clipped; both are reset below
    padded = ak.pad_none(ak.values_astype(ml, np.float64), N_ML_SCORES, axis=1, clip=True)
    padded = ak.to_numpy(ak.fill_none(padded, ML_SENTINEL))
    scores[has_scores] = padded[has_scores]
    return scores


def _empty(mass_dau):
    empty = np.array([], dtype=np.float64)
    return Evaluation(
        px_dau=empty, py_dau=empty, pz_dau=empty,
        mass_dau=np.full(0, mass_dau),
        px=empty, py=empty, pz=empty,
        inv_mass=empty, inv_mass_for_sparse=empty, rapidity=empty,
        ml_scores=np.full((0, N_ML_SCORES), ML_SENTINEL),
        is_rotated=np.zeros(0, dtype=np.int64),
    )


def extract_dstar(candidates, context, selection_flag=True, with_ml=False):
    """
    D*+ -> D0 pi+ kinematics; the probe is the soft pion.

    The mass stored for the histograms is M(D*) - M(D0), or the
    charge-conjugate combination for a negative soft pion.
    No background rotation is defined for this channel.
    """
    n = len(candidates)
    if n == 0:
        return _empty(MASS_PION)

    px = _column(candidates, "px")
    py = _column(candidates, "py")
    pz = _column(candidates, "pz")

    particle = _column(candidates, "sign_soft_pi") > 0
    inv_mass = np.where(
        particle,
        _column(candidates, "inv_mass_dstar"),
        _column(candidates, "inv_mass_anti_dstar"),
    )
    inv_mass_d0 = np.where(
        particle,
        _column(candidates, "inv_mass_d0"),
        _column(candidates, "inv_mass_d0bar"),
    )

    evaluation = Evaluation(
        px_dau=_column(candidates, "px_soft_pi"),
        py_dau=_column(candidates, "py_soft_pi"),
        pz_dau=_column(candidates, "pz_soft_pi"),
        mass_dau=np.full(n, MASS_PION),
        px=px,
        py=py,
        pz=pz,
        inv_mass=inv_mass,
        inv_mass_for_sparse=inv_mass - inv_mass_d0,
        rapidity=rapidity(px, py, pz, MASS_DSTAR),
        ml_scores=_ml_scores(candidates, "ml_prob_dstar", with_ml),
        is_rotated=np.zeros(n, dtype=np.int64),
    )
    return evaluation.finite()


# per hypothesis: probe prong, prong masses, ML scores
_LC_HYPOTHESES = {
    MassHypoLcToPKPi.PKPI: (0, (MASS_PROTON, MASS_KAON, MASS_PION), "ml_prob_lc_to_pkpi"),
    MassHypoLcToPKPi.PIKP: (2, (MASS_PION, MASS_KAON, MASS_PROTON), "ml_prob_lc_to_pikp"),
}


def extract_lc_to_pkpi(candidates, context, selection_flag=1, with_ml=False):
    """
    Lambda_c+ -> p K- pi+ kinematics; the probe is the proton.

    Only candidates selected under ``context.mass_hypo`` are kept. For a
    rotated context the transverse momentum of the kaon (prong 1) is
    rotated by ``context.rotation_angle`` and the parent momentum and mass
    are rebuilt from the prongs. Rotated replicas inherit the ML scores of
    the original candidate.
    """
    probe, masses, ml_field = _LC_HYPOTHESES[
        MassHypoLcToPKPi(context.mass_hypo)
    ]
    if len(candidates) == 0:
        return _empty(MASS_PROTON)

    candidates = candidates[mass_hypo_mask(candidates, context.mass_hypo, selection_flag)]
    n = len(candidates)
    if n == 0:
        return _empty(MASS_PROTON)

    prongs = [
        [_column(candidates, f"p{c}_prong{i}") for c in ("x", "y", "z")]
        for i in range(3)
    ]
    probe_px, probe_py, probe_pz = prongs[probe]

    if context.is_rotated:
        prongs[1][0], prongs[1][1] = rotate_transverse(
            prongs[1][0], prongs[1][1], context.rotation_angle
        )
        px = prongs[0][0] + prongs[1][0] + prongs[2][0]
        py = prongs[0][1] + prongs[1][1] + prongs[2][1]
        pz = prongs[0][2] + prongs[1][2] + prongs[2][2]
        inv_mass = invariant_mass_from_prongs(prongs, masses)
    else:
        px = _column(candidates, "px")
        py = _column(candidates, "py")
        pz = _column(candidates, "pz")
        inv_mass = invariant_mass_from_prongs(prongs, masses)

    evaluation = Evaluation(
        px_dau=probe_px,
        py_dau=probe_py,
        pz_dau=probe_pz,
        mass_dau=np.full(n, MASS_PROTON),
        px=px,
        py=py,
        pz=pz,
        inv_mass=inv_mass,
        inv_mass_for_sparse=inv_mass,
        rapidity=rapidity(px, py, pz, MASS_LAMBDA_C),
        ml_scores=_ml_scores(candidates, ml_field, with_ml),
        is_rotated=np.full(n, int(context.is_rotated), dtype=np.int64),
    )
    return evaluation.finite()
