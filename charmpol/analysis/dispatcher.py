"""
Candidate dispatching.

Resolves the processing mode of the run from the configuration and
lays out, for each candidate, which (mass hypothesis, background
rotation) pairs have to be evaluated.
"""

from dataclasses import dataclass
from typing import Callable

import numpy as np

from charmpol.analysis.channels import (
    DecayChannel,
    N_MASS_HYPOS_LC_TO_PKPI,
    ProcessingMode,
)
from charmpol.analysis.config import ConfigurationError
from charmpol.analysis.kinematics import (
    EvaluationContext,
    extract_dstar,
    extract_lc_to_pkpi,
)


def resolve_processing_mode(process_cfg):
    """
    Return the single enabled ProcessingMode.

    Raises
    ------
    ConfigurationError
        If no mode or more than one mode is enabled.
    """
    unknown = set(process_cfg) - {mode.value for mode in ProcessingMode}
    if unknown:
        raise ConfigurationError(
            f"Unknown process switch(es): {', '.join(sorted(unknown))}"
        )

    enabled = [mode for mode in ProcessingMode if process_cfg.get(mode.value, False)]
    if len(enabled) > 1:
        raise ConfigurationError(
            "Only one process function should be enabled at a time, "
            f"got: {', '.join(mode.value for mode in enabled)}"
        )
    if not enabled:
        raise ConfigurationError("No process function enabled")
    return enabled[0]


def rotation_angle_step(n_rotations):
    """
    Angle between consecutive rotated replicas.

    n_rotations == 0 gives 2pi (no rotation), 1 gives pi, 2 gives
    2pi/3 (replicas at 2pi/3 and 4pi/3), ...
    """
    return 2.0 * np.pi / (n_rotations + 1)


def rotation_angles(n_rotations):
    """
    Rotation angle of every replica, index 0 being the original candidate.
    """
    step = rotation_angle_step(n_rotations)
    return [k * step for k in range(n_rotations + 1)]


@dataclass(frozen=True)
class ChannelStrategy:
    """
    Concrete per-run processing strategy of a ProcessingMode.
    """

    mode: ProcessingMode
    n_mass_hypos: int
    supports_rotations: bool
    extract: Callable

    @property
    def channel(self):
        return self.mode.channel

    @property
    def with_ml(self):
        return self.mode.with_ml


def strategy_for(mode):
    if mode.channel == DecayChannel.DSTAR_TO_D0_PI:
        return ChannelStrategy(
            mode=mode,
            n_mass_hypos=1,
            supports_rotations=False,
            extract=extract_dstar,
        )
    return ChannelStrategy(
        mode=mode,
        n_mass_hypos=N_MASS_HYPOS_LC_TO_PKPI,
        supports_rotations=True,
        extract=extract_lc_to_pkpi,
    )


def evaluation_plan(strategy, n_rotations):
    """
    Ordered evaluation contexts for one candidate.

    The original candidate (rotation 0) comes first, followed by the
    rotated replicas; all mass hypotheses are tried for each of them.
    """
    if not strategy.supports_rotations:
        n_rotations = 0
    step = rotation_angle_step(n_rotations)
    return [
        EvaluationContext(mass_hypo=i_mass, rotation_id=i_rot, rotation_angle=i_rot * step)
        for i_rot in range(n_rotations + 1)
        for i_mass in range(strategy.n_mass_hypos)
    ]
