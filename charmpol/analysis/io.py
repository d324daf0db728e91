"""
I/O utilities for reading charm-hadron candidate tables with uproot
and writing the polarisation histograms.
"""

import os

import numpy as np
import uproot
import awkward as ak

from charmpol.analysis.channels import DecayChannel


# field name -> branch name in the candidate trees
DSTAR_BRANCHES = {
    "px_soft_pi": "fPxSoftPi",
    "py_soft_pi": "fPySoftPi",
    "pz_soft_pi": "fPzSoftPi",
    "sign_soft_pi": "fSignSoftPi",
    "px": "fPxDstar",
    "py": "fPyDstar",
    "pz": "fPzDstar",
    "inv_mass_dstar": "fInvMassDstar",
    "inv_mass_anti_dstar": "fInvMassAntiDstar",
    "inv_mass_d0": "fInvMassD0",
    "inv_mass_d0bar": "fInvMassD0Bar",
    "is_sel_dstar_to_d0_pi": "fIsSelDstarToD0Pi",
}

DSTAR_ML_BRANCHES = {
    "ml_prob_dstar": "fMlProbDstarToD0Pi",
}

LC_TO_PKPI_BRANCHES = {
    "px_prong0": "fPxProng0",
    "py_prong0": "fPyProng0",
    "pz_prong0": "fPzProng0",
    "px_prong1": "fPxProng1",
    "py_prong1": "fPyProng1",
    "pz_prong1": "fPzProng1",
    "px_prong2": "fPxProng2",
    "py_prong2": "fPyProng2",
    "pz_prong2": "fPzProng2",
    "px": "fPx",
    "py": "fPy",
    "pz": "fPz",
    "is_sel_lc_to_pkpi": "fIsSelLcToPKPi",
    "is_sel_lc_to_pikp": "fIsSelLcToPiKP",
}

LC_TO_PKPI_ML_BRANCHES = {
    "ml_prob_lc_to_pkpi": "fMlProbLcToPKPi",
    "ml_prob_lc_to_pikp": "fMlProbLcToPiKP",
}


def candidate_branches(mode):
    """
    Field -> branch mapping needed by a processing mode.
    """
    if mode.channel == DecayChannel.DSTAR_TO_D0_PI:
        branches = dict(DSTAR_BRANCHES)
        if mode.with_ml:
            branches.update(DSTAR_ML_BRANCHES)
    else:
        branches = dict(LC_TO_PKPI_BRANCHES)
        if mode.with_ml:
            branches.update(LC_TO_PKPI_ML_BRANCHES)
    return branches


def _matches(key, tree_name):
    if tree_name is None:
        return True
    return key.split(";")[0].split("/")[-1] == tree_name


def _find_trees(file, tree_name=None):
    """
    Detect the candidate TTree(s) inside the ROOT file.

    Logic:
    1. If `tree_name` exists at the top level, use it.
    2. Otherwise, use every TTree listed by the file (with the requested
       name, if any); derived AO2D files hold one per DF_ directory.
    3. Otherwise, search for TTrees inside subdirectories.
    """
    # Direct match, with or without ';1' versioning
    if tree_name is not None:
        for key in (tree_name, f"{tree_name};1"):
            if key in file.keys():
                return [file[key]]

    tt_keys = [
        k for k, v in file.classnames(cycle=False).items()
        if v == "TTree" and _matches(k, tree_name)
    ]
    if tt_keys:
        return [file[k] for k in tt_keys]

    # Search inside directories
    trees = []
    for key in file.keys():
        try:
            subkeys = file[key].keys()
        except AttributeError:
            continue
        for subkey in subkeys:
            full = f"{key}/{subkey}"
            # RNTuple fields and other non-object entries carry no classname
            obj = file[full]
            if getattr(obj, "classname", None) == "TTree" and _matches(subkey, tree_name):
                trees.append(obj)
    if trees:
        return trees

    raise RuntimeError(f"No TTree found in file {file.file_path}")


def rename_fields(arrays, branches):
    """
    Build a record array with analysis field names from raw branches.
    """
    return ak.zip(
        {field: arrays[branch] for field, branch in branches.items()},
        depth_limit=1,
    )


def load_candidates(filename, mode, tree_name=None):
    """
    Load the candidates of a processing mode into an Awkward record array.
    Trees spread over several directories are concatenated.
    """
    branches = candidate_branches(mode)

    with uproot.open(filename) as f:
        trees = _find_trees(f, tree_name)
        chunks = [tree.arrays(list(branches.values()), library="ak") for tree in trees]

    arrays = chunks[0] if len(chunks) == 1 else ak.concatenate(chunks)
    return rename_fields(arrays, branches)


def save_histograms(registry, outdir, root_filename="AnalysisResults.root"):
    """
    Write the sparse histograms.

    Each histogram goes to ``<name>.npz`` (bin edges, populated bin
    indices and counts); the 1D projections onto each of its axes go to
    a ROOT file, one directory per histogram.

    Returns
    -------
    list of str
        Paths of the files written.
    """
    os.makedirs(outdir, exist_ok=True)
    written = []

    for h in registry.values():
        path = os.path.join(outdir, f"{h.name}.npz")
        np.savez(path, **h.to_dict())
        written.append(path)

    root_path = os.path.join(outdir, root_filename)
    with uproot.recreate(root_path) as f:
        for h in registry.values():
            for axis_name in h.axis_names:
                f[f"{h.name}/{axis_name}"] = h.project(axis_name)
    written.append(root_path)

    return written
