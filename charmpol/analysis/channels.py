"""
Decay channels, mass hypotheses and processing modes.
"""

from enum import Enum, IntEnum


class DecayChannel(IntEnum):
    DSTAR_TO_D0_PI = 0
    LC_TO_PKPI = 1


class MassHypoLcToPKPi(IntEnum):
    PKPI = 0
    PIKP = 1


N_MASS_HYPOS_LC_TO_PKPI = len(MassHypoLcToPKPi)


class ProcessingMode(Enum):
    """
    One processing mode per run. The value is the key of the
    corresponding switch in the ``process`` configuration table.
    """

    DSTAR = "dstar"
    DSTAR_WITH_ML = "dstar_with_ml"
    LC_TO_PKPI = "lc_to_pkpi"
    LC_TO_PKPI_WITH_ML = "lc_to_pkpi_with_ml"

    @property
    def channel(self):
        if self in (ProcessingMode.DSTAR, ProcessingMode.DSTAR_WITH_ML):
            return DecayChannel.DSTAR_TO_D0_PI
        return DecayChannel.LC_TO_PKPI

    @property
    def with_ml(self):
        return self in (ProcessingMode.DSTAR_WITH_ML, ProcessingMode.LC_TO_PKPI_WITH_ML)
