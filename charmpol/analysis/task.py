"""
Polarisation analysis task for charm hadrons.

For each selected candidate, the rest-frame decay angle of the probe
daughter is measured with respect to the helicity, production, beam
and random axes and filled, together with the candidate mass, pT, pz
and rapidity, into sparse histograms.
"""

import logging

import numpy as np

from charmpol.analysis.angles import cos_theta_star
from charmpol.analysis.channels import DecayChannel
from charmpol.analysis.config import axis_specs, n_background_rotations
from charmpol.analysis.dispatcher import (
    evaluation_plan,
    resolve_processing_mode,
    strategy_for,
)
from charmpol.analysis.histograms import (
    book_histograms,
    enabled_reference_axes,
    fill_histograms,
)
from charmpol.analysis.selection import select_candidates


LOGGER = logging.getLogger(__name__)


class PolarisationTask:
    """
    Owns the histogram registry and random generator of one worker.

    All configuration checks happen in the constructor and raise
    ConfigurationError, so a misconfigured run stops before any
    candidate is processed.
    """

    def __init__(self, config, rng=None):
        self.mode = resolve_processing_mode(config["process"])
        self.strategy = strategy_for(self.mode)
        self.enabled_axes = enabled_reference_axes(config["output"])
        self.n_rotations = n_background_rotations(config)
        self.selection_cfg = config["selection"]

        if self.mode.channel == DecayChannel.LC_TO_PKPI:
            self.selection_flag = self.selection_cfg["lc_to_pkpi"]
        else:
            self.selection_flag = self.selection_cfg["dstar_to_d0_pi"]
            if self.n_rotations > 0:
                LOGGER.warning(
                    "Rotational background is not defined for %s, ignoring n_rotations=%d",
                    self.mode.value,
                    self.n_rotations,
                )

        self.plan = evaluation_plan(self.strategy, self.n_rotations)
        self.histograms = book_histograms(self.mode, self.enabled_axes, axis_specs(config))

        if rng is None:
            rng = np.random.default_rng(config.get("random_seed"))
        self.rng = rng

        self.n_candidates = 0
        self.n_evaluations = 0
        self.n_skipped = 0

        LOGGER.info(
            "Processing mode %s with %d evaluation(s) per candidate",
            self.mode.value,
            len(self.plan),
        )

    def process(self, candidates):
        """
        Run the analysis on a chunk of candidates.

        Parameters
        ----------
        candidates : awkward.Array
            Candidate records of the active decay channel.

        Returns
        -------
        int
            Number of evaluations filled into the histograms.
        """
        candidates = select_candidates(candidates, self.mode.channel, self.selection_cfg)
        n_selected = len(candidates)
        self.n_candidates += n_selected
        if n_selected == 0:
            return 0

        n_filled = 0
        for context in self.plan:
            evaluation = self.strategy.extract(
                candidates,
                context,
                selection_flag=self.selection_flag,
                with_ml=self.strategy.with_ml,
            )
            # candidates not selected under this mass hypothesis (or malformed)
            self.n_skipped += n_selected - len(evaluation)
            if len(evaluation) == 0:
                continue

            cosines = cos_theta_star(evaluation, self.rng, self.enabled_axes)
            fill_histograms(self.histograms, self.mode, evaluation, cosines)
            n_filled += len(evaluation)

        self.n_evaluations += n_filled
        LOGGER.debug(
            "Processed %d candidate(s): %d evaluation(s) filled", n_selected, n_filled
        )
        return n_filled
