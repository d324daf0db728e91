"""
Physics utilities for charm-hadron polarisation analyses.

This module provides basic four-vector operations, rapidity and
invariant mass calculations using NumPy. Every helper accepts NumPy
arrays, Awkward Arrays or plain floats.
"""

import numpy as np
import awkward as ak


# PDG masses [GeV/c^2]
MASS_PION = 0.13957039
MASS_KAON = 0.493677
MASS_PROTON = 0.93827208816
MASS_DSTAR = 2.01026
MASS_LAMBDA_C = 2.28646


def energy(px, py, pz, mass):
    """
    Energy of a particle with momentum (px, py, pz) and a given mass.
    """
    return np.sqrt(px**2 + py**2 + pz**2 + mass**2)


def transverse_momentum(px, py):
    return np.sqrt(px**2 + py**2)


def invariant_mass(E, px, py, pz):
    """
    Compute invariant mass m = sqrt(E^2 - |p|^2) with c = 1.

    Parameters
    ----------
    E, px, py, pz : array-like
        Components of the four-vector(s).

    Returns
    -------
    array-like
        Invariant mass values with the same structure as the inputs.
    """
    p2 = px**2 + py**2 + pz**2
    m2 = E**2 - p2
    # guard against small negative values from numerical precision
    m2 = ak.where(m2 < 0, 0, m2) if isinstance(m2, ak.Array) else np.where(m2 < 0, 0, m2)
    return np.sqrt(m2)


def rapidity(px, py, pz, mass):
    """
    Rapidity y = 1/2 ln((E + pz) / (E - pz)).

    The energy is built from the momentum and the *given* mass, so the
    nominal (PDG) mass of the hadron is normally passed here rather than
    the reconstructed one.
    """
    E = energy(px, py, pz, mass)
    return 0.5 * np.log((E + pz) / (E - pz))


def rotate_transverse(px, py, angle):
    """
    Rotate the transverse components of a momentum by `angle` [rad].

    Returns
    -------
    tuple
        The rotated (px, py).
    """
    cos_a = np.cos(angle)
    sin_a = np.sin(angle)
    return px * cos_a - py * sin_a, px * sin_a + py * cos_a


def invariant_mass_from_prongs(momenta, masses):
    """
    Invariant mass of an n-body system.

    Parameters
    ----------
    momenta : sequence of (px, py, pz)
        Three-momentum of each prong.
    masses : sequence of float
        Mass hypothesis of each prong, in the same order.

    Returns
    -------
    array-like
        Invariant mass of the sum of the prong four-vectors.
    """
    if len(momenta) != len(masses):
        raise ValueError(
            f"Got {len(momenta)} prong momenta but {len(masses)} masses"
        )

    E_sum = 0.0
    px_sum = 0.0
    py_sum = 0.0
    pz_sum = 0.0
    for (px, py, pz), mass in zip(momenta, masses):
        E_sum = E_sum + energy(px, py, pz, mass)
        px_sum = px_sum + px
        py_sum = py_sum + py
        pz_sum = pz_sum + pz

    return invariant_mass(E_sum, px_sum, py_sum, pz_sum)
