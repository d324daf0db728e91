"""
Candidate selection for the charm polarisation analysis.

These filters mirror the ones applied to the candidate tables before
the polarisation task sees them: a candidate is admitted when its
selection flag meets the configured threshold.
"""

import awkward as ak

from charmpol.analysis.channels import DecayChannel, MassHypoLcToPKPi


def select_dstar_candidates(arrays, selection_flag=True):
    """
    Keep D* candidates whose selection flag equals `selection_flag`.
    """
    if len(arrays) == 0:
        return arrays
    mask = arrays["is_sel_dstar_to_d0_pi"] == selection_flag
    return arrays[mask]


def select_lc_to_pkpi_candidates(arrays, selection_flag=1):
    """
    Keep Lc candidates selected under at least one mass hypothesis.
    """
    if len(arrays) == 0:
        return arrays
    mask = (arrays["is_sel_lc_to_pkpi"] >= selection_flag) | (
        arrays["is_sel_lc_to_pikp"] >= selection_flag
    )
    return arrays[mask]


def mass_hypo_mask(arrays, mass_hypo, selection_flag=1):
    """
    Per-candidate mask of the Lc candidates selected under `mass_hypo`.
    """
    if MassHypoLcToPKPi(mass_hypo) == MassHypoLcToPKPi.PKPI:
        return ak.to_numpy(arrays["is_sel_lc_to_pkpi"] >= selection_flag)
    return ak.to_numpy(arrays["is_sel_lc_to_pikp"] >= selection_flag)


def select_candidates(arrays, channel, selection_cfg):
    """
    Apply the channel selection with the thresholds of `selection_cfg`.
    """
    if channel == DecayChannel.DSTAR_TO_D0_PI:
        return select_dstar_candidates(arrays, selection_cfg["dstar_to_d0_pi"])
    return select_lc_to_pkpi_candidates(arrays, selection_cfg["lc_to_pkpi"])
