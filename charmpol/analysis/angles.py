"""
Decay angles in the rest frame of the charm hadron.

The probe daughter is boosted into the parent rest frame with the
``vector`` library, and the cosine of its polar angle is measured with
respect to four reference axes:

- helicity: the parent momentum direction,
- production: the normal to the plane of the parent momentum and the
  beam, (py, -px, 0),
- beam: the z axis,
- random: an axis drawn anew for every evaluation, used as a control.
"""

import numpy as np
import vector


REFERENCE_AXES = ("helicity", "production", "beam", "random")


def draw_random_axis(rng, size):
    """
    Unit vectors with polar angle uniform in [0, pi] and azimuth
    uniform in [0, 2pi], one per row.

    Parameters
    ----------
    rng : numpy.random.Generator
        Source of randomness; seed it for reproducible output.
    size : int
        Number of axes to draw.

    Returns
    -------
    numpy.ndarray
        Array of shape (size, 3).
    """
    phi = rng.uniform(0.0, 2.0 * np.pi, size)
    theta = rng.uniform(0.0, np.pi, size)
    return np.stack(
        [np.sin(theta) * np.cos(phi), np.sin(theta) * np.sin(phi), np.cos(theta)],
        axis=-1,
    )


def four_vectors(px, py, pz, mass):
    return vector.array(
        {
            "px": np.asarray(px, dtype=np.float64),
            "py": np.asarray(py, dtype=np.float64),
            "pz": np.asarray(pz, dtype=np.float64),
            "mass": np.asarray(mass, dtype=np.float64),
        }
    )


def boost_to_rest_frame(daughter, mother):
    """
    Boost `daughter` into the rest frame of `mother` (both vector arrays).
    """
    return daughter.boostCM_of_p4(mother)


def _cosine(axis_xyz, p_xyz, p_mag, normalise_axis=True):
    dot = np.sum(axis_xyz * p_xyz, axis=-1)
    if normalise_axis:
        return dot / p_mag / np.linalg.norm(axis_xyz, axis=-1)
    return dot / p_mag


def cos_theta_star(evaluation, rng=None, axes=REFERENCE_AXES):
    """
    Cosine of the rest-frame decay angle for each requested reference axis.

    Parameters
    ----------
    evaluation : charmpol.analysis.kinematics.Evaluation
        Probe-daughter and parent kinematics in the laboratory frame.
    rng : numpy.random.Generator, optional
        Required when the random axis is requested.
    axes : iterable of str
        Subset of REFERENCE_AXES.

    Returns
    -------
    dict
        Axis name -> array of cosines, one per evaluation row.

    Notes
    -----
    A probe at rest in the parent frame has no direction, and the
    cosines are then NaN; they are not guarded.
    """
    axes = tuple(axes)
    unknown = set(axes) - set(REFERENCE_AXES)
    if unknown:
        raise ValueError(f"Unknown reference axis: {', '.join(sorted(unknown))}")

    daughter = four_vectors(
        evaluation.px_dau, evaluation.py_dau, evaluation.pz_dau, evaluation.mass_dau
    )
    mother = four_vectors(evaluation.px, evaluation.py, evaluation.pz, evaluation.inv_mass)
    daughter_cm = boost_to_rest_frame(daughter, mother)

    p_cm = np.stack(
        [np.asarray(daughter_cm.px), np.asarray(daughter_cm.py), np.asarray(daughter_cm.pz)],
        axis=-1,
    )
    px = np.asarray(evaluation.px, dtype=np.float64)
    py = np.asarray(evaluation.py, dtype=np.float64)
    pz = np.asarray(evaluation.pz, dtype=np.float64)

    cosines = {}
    with np.errstate(divide="ignore", invalid="ignore"):
        p_mag = np.linalg.norm(p_cm, axis=-1)
        if "helicity" in axes:
            helicity = np.stack([px, py, pz], axis=-1)
            cosines["helicity"] = _cosine(helicity, p_cm, p_mag)
        if "production" in axes:
            normal = np.stack([py, -px, np.zeros_like(px)], axis=-1)
            cosines["production"] = _cosine(normal, p_cm, p_mag)
        if "beam" in axes:
            beam = np.broadcast_to([0.0, 0.0, 1.0], p_cm.shape)
            cosines["beam"] = _cosine(beam, p_cm, p_mag, normalise_axis=False)
        if "random" in axes:
            if rng is None:
                raise ValueError("A random generator is needed for the random axis")
            random_axis = draw_random_axis(rng, len(p_cm))
            cosines["random"] = _cosine(random_axis, p_cm, p_mag, normalise_axis=False)

    return cosines
