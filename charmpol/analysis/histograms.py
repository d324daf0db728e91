"""
Sparse multi-dimensional histograms and the mapping of evaluated
candidates onto them.

A SparseHist only stores populated bins, keyed by the tuple of bin
indices, while the binning itself is delegated to ``hist`` axes. Dense
``hist.Hist`` projections onto a few axes are available for plotting
and export.
"""

import logging

import numpy as np
import hist
from hist import Hist

from charmpol.analysis.angles import REFERENCE_AXES
from charmpol.analysis.channels import DecayChannel
from charmpol.analysis.config import ConfigurationError


LOGGER = logging.getLogger(__name__)

HISTOGRAM_NAMES = {
    "helicity": "hSparseCharmPolarisationHelicity",
    "production": "hSparseCharmPolarisationProduction",
    "beam": "hSparseCharmPolarisationBeam",
    "random": "hSparseCharmPolarisationRandom",
}


class SparseHist:
    """
    N-dimensional histogram storing only the populated bins.

    Values outside an axis range, as well as NaN, are not stored: they
    are counted in ``n_dropped``.
    """

    def __init__(self, name, specs, title=""):
        """
        Parameters
        ----------
        name : str
            Histogram name.
        specs : list of (axis_name, AxisSpec)
            Ordered axis definitions.
        title : str
            Free-text description.
        """
        self.name = name
        self.title = title
        self.specs = list(specs)
        self.axes = [
            hist.axis.Regular(
                spec.nbins, spec.low, spec.high,
                name=axis_name, label=spec.label,
                underflow=False, overflow=False,
            )
            for axis_name, spec in self.specs
        ]
        self.bins = {}
        self.n_dropped = 0

    @property
    def axis_names(self):
        return [axis_name for axis_name, _ in self.specs]

    @property
    def ndim(self):
        return len(self.specs)

    @property
    def entries(self):
        return int(sum(self.bins.values()))

    def __len__(self):
        # number of populated bins
        return len(self.bins)

    def fill(self, *values):
        """
        Fill one entry per row; one array (or scalar) per axis, in axis order.
        """
        if len(values) != self.ndim:
            raise ValueError(
                f"{self.name} has {self.ndim} axes but got {len(values)} values"
            )
        columns = [np.atleast_1d(np.asarray(v, dtype=np.float64)) for v in values]
        n = max(len(c) for c in columns)
        columns = [np.ascontiguousarray(np.broadcast_to(c, (n,))) for c in columns]

        in_range = np.ones(n, dtype=bool)
        indices = []
        for axis, column in zip(self.axes, columns):
            # -1 and len(axis) flag under- and overflow
            index = np.atleast_1d(np.asarray(axis.index(column), dtype=np.int64))
            in_range &= np.isfinite(column) & (index >= 0) & (index < len(axis))
            indices.append(index)

        self.n_dropped += int(n - np.count_nonzero(in_range))
        if not in_range.any():
            return

        indices = np.stack(indices, axis=-1)[in_range]
        keys, counts = np.unique(indices, axis=0, return_counts=True)
        for key, count in zip(map(tuple, keys.tolist()), counts.tolist()):
            self.bins[key] = self.bins.get(key, 0) + count

    def _check_compatible(self, other):
        if self.specs != other.specs:
            raise ValueError(f"Cannot merge {other.name} into {self.name}: axes differ")

    def __iadd__(self, other):
        self._check_compatible(other)
        for key, count in other.bins.items():
            self.bins[key] = self.bins.get(key, 0) + count
        self.n_dropped += other.n_dropped
        return self

    def copy(self):
        out = SparseHist(self.name, self.specs, self.title)
        out.bins = dict(self.bins)
        out.n_dropped = self.n_dropped
        return out

    def bin_indices(self):
        """
        Populated bins as an (n_bins, ndim) index array and an (n_bins,) count array.
        """
        if not self.bins:
            return np.zeros((0, self.ndim), dtype=np.int64), np.zeros(0, dtype=np.int64)
        keys = np.array(list(self.bins.keys()), dtype=np.int64)
        counts = np.array(list(self.bins.values()), dtype=np.int64)
        return keys, counts

    def project(self, *axis_names):
        """
        Dense projection onto the given axes.

        Returns
        -------
        hist.Hist
        """
        if not axis_names:
            raise ValueError("Need at least one axis to project onto")
        positions = [self.axis_names.index(name) for name in axis_names]

        h = Hist(
            *[
                hist.axis.Regular(
                    self.specs[i][1].nbins, self.specs[i][1].low, self.specs[i][1].high,
                    name=self.specs[i][0], label=self.specs[i][1].label,
                )
                for i in positions
            ]
        )
        keys, counts = self.bin_indices()
        if counts.size > 0:
            centers = [self.axes[i].centers[keys[:, i]] for i in positions]
            h.fill(*centers, weight=counts)
        return h

    def to_dict(self):
        keys, counts = self.bin_indices()
        out = {"bin_indices": keys, "counts": counts}
        for axis_name, axis in zip(self.axis_names, self.axes):
            out[f"edges_{axis_name}"] = np.asarray(axis.edges)
        return out


def axis_layout(mode, angle_axis):
    """
    Ordered axis names of the histogram for one reference axis.
    """
    layout = ["inv_mass", "pt", "pz", "y", f"cos_theta_star_{angle_axis}"]
    if mode.with_ml:
        layout += ["ml_bkg", "ml_non_prompt"]
    if mode.channel == DecayChannel.LC_TO_PKPI:
        layout.append("is_rotated_candidate")
    return layout


def enabled_reference_axes(output_cfg):
    """
    Reference axes whose histogram is switched on.

    Raises
    ------
    ConfigurationError
        If every output histogram is switched off.
    """
    unknown = set(output_cfg) - set(REFERENCE_AXES)
    if unknown:
        raise ConfigurationError(
            f"Unknown output histogram(s): {', '.join(sorted(unknown))}"
        )
    enabled = [axis for axis in REFERENCE_AXES if output_cfg.get(axis, False)]
    if not enabled:
        raise ConfigurationError("No output THnSparses enabled")
    return enabled


def book_histograms(mode, enabled_axes, specs):
    """
    Build the histogram registry for a run.

    Parameters
    ----------
    mode : ProcessingMode
    enabled_axes : list of str
        Reference axes with an active histogram.
    specs : dict
        Axis name -> AxisSpec, as from charmpol.analysis.config.axis_specs.

    Returns
    -------
    dict
        Reference-axis name -> SparseHist.
    """
    registry = {}
    for angle_axis in enabled_axes:
        layout = axis_layout(mode, angle_axis)
        missing = [name for name in layout if name not in specs]
        if missing:
            raise ConfigurationError(f"Missing axis definition(s): {', '.join(missing)}")
        title = f"THn for polarisation studies with cosThStar w.r.t. {angle_axis} axis"
        if mode.with_ml:
            title += " and BDT scores"
        registry[angle_axis] = SparseHist(
            HISTOGRAM_NAMES[angle_axis],
            [(name, specs[name]) for name in layout],
            title=title,
        )
        LOGGER.info("THnSparse with cosThStar w.r.t. %s axis active.", angle_axis)
    return registry


def fill_histograms(registry, mode, evaluation, cosines):
    """
    Fill every booked histogram with the rows of one evaluation.
    """
    if len(evaluation) == 0:
        return
    pt = evaluation.pt
    for angle_axis, h in registry.items():
        values = [
            evaluation.inv_mass_for_sparse,
            pt,
            evaluation.pz,
            evaluation.rapidity,
            cosines[angle_axis],
        ]
        if mode.with_ml:
            # background and non-prompt scores; the prompt score is not stored
            values += [evaluation.ml_scores[:, 0], evaluation.ml_scores[:, 2]]
        if mode.channel == DecayChannel.LC_TO_PKPI:
            values.append(evaluation.is_rotated)
        h.fill(*values)


def merge_registries(registries):
    """
    Sum a sequence of registries with identical bookings into a new one.
    """
    registries = list(registries)
    if not registries:
        raise ValueError("No histogram registries to merge")
    merged = {key: h.copy() for key, h in registries[0].items()}
    for registry in registries[1:]:
        if set(registry) != set(merged):
            raise ValueError("Cannot merge registries with different histograms")
        for key, h in registry.items():
            merged[key] += h
    return merged
