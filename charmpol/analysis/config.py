"""
Configuration handling for the charm polarisation analysis.

The YAML file given on the command line is merged on top of
DEFAULT_CONFIG, so a run configuration only has to list the options
it changes.
"""

import copy
from typing import NamedTuple

import yaml


class ConfigurationError(ValueError):
    """Invalid analysis configuration, detected before any candidate is read."""


DEFAULT_CONFIG = {
    "data_dir": "data",
    "file_pattern": "*.root",
    "tree_name": None,
    "output_dir": "output",
    "n_workers": 1,
    "executor": "processes",
    "random_seed": None,
    # exactly one of these must be true
    "process": {
        "dstar": True,
        "dstar_with_ml": False,
        "lc_to_pkpi": False,
        "lc_to_pkpi_with_ml": False,
    },
    "selection": {
        "dstar_to_d0_pi": True,
        "lc_to_pkpi": 1,
    },
    "background": {
        "n_rotations": 0,
    },
    # one output histogram per reference axis
    "output": {
        "helicity": True,
        "production": True,
        "beam": True,
        "random": True,
    },
    "axes": {
        "inv_mass": [200, 0.139, 0.179],
        "pt": [100, 0.0, 100.0],
        "pz": [100, -50.0, 50.0],
        "y": [20, -1.0, 1.0],
        "cos_theta_star_helicity": [20, -1.0, 1.0],
        "cos_theta_star_production": [20, -1.0, 1.0],
        "cos_theta_star_beam": [20, -1.0, 1.0],
        "cos_theta_star_random": [20, -1.0, 1.0],
        "ml_bkg": [100, 0.0, 1.0],
        "ml_non_prompt": [100, 0.0, 1.0],
        "is_rotated_candidate": [2, -0.5, 1.5],
    },
    "analysis": {
        "make_plots": True,
    },
}

AXIS_LABELS = {
    "inv_mass": r"$M$ (GeV/$c^2$)",
    "pt": r"$p_\mathrm{T}$ (GeV/$c$)",
    "pz": r"$p_z$ (GeV/$c$)",
    "y": r"$y$",
    "cos_theta_star_helicity": r"$\cos(\vartheta_\mathrm{helicity})$",
    "cos_theta_star_production": r"$\cos(\vartheta_\mathrm{production})$",
    "cos_theta_star_beam": r"$\cos(\vartheta_\mathrm{beam})$",
    "cos_theta_star_random": r"$\cos(\vartheta_\mathrm{random})$",
    "ml_bkg": "ML bkg",
    "ml_non_prompt": "ML non-prompt",
    "is_rotated_candidate": "0: standard candidate, 1: rotated candidate",
}


class AxisSpec(NamedTuple):
    nbins: int
    low: float
    high: float
    label: str = ""


def _deep_merge_dict(base, override):
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge_dict(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def merge_config(cfg):
    """
    Merge a (possibly partial) user configuration over DEFAULT_CONFIG.
    """
    if cfg is None:
        return copy.deepcopy(DEFAULT_CONFIG)
    if not isinstance(cfg, dict):
        raise ConfigurationError("Top-level configuration must be a mapping")
    return _deep_merge_dict(DEFAULT_CONFIG, cfg)


def load_config(path):
    with open(path) as f:
        return merge_config(yaml.safe_load(f))


def parse_axis_spec(name, raw):
    """
    Turn a ``[nbins, low, high]`` entry into an AxisSpec.
    """
    try:
        nbins, low, high = raw
        nbins = int(nbins)
        low = float(low)
        high = float(high)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Axis '{name}' must be [nbins, low, high], got {raw!r}"
        ) from e
    if nbins <= 0 or not high > low:
        raise ConfigurationError(
            f"Axis '{name}' needs nbins > 0 and high > low, got {raw!r}"
        )
    return AxisSpec(nbins, low, high, AXIS_LABELS.get(name, name))


def axis_specs(config):
    """
    All axis definitions of the configuration, keyed by axis name.
    """
    return {
        name: parse_axis_spec(name, raw)
        for name, raw in config["axes"].items()
    }


def n_background_rotations(config):
    n = config["background"]["n_rotations"]
    if isinstance(n, bool) or not isinstance(n, int) or n < 0:
        raise ConfigurationError(
            f"background.n_rotations must be a non-negative integer, got {n!r}"
        )
    return n
