"""
artsoem.physics
---------------

The few physical relations required to map retrieval quantities onto
the atmospheric state.
"""
import numpy as np
from typhon.constants import boltzmann


def number_density(p, t):
    """
    Total number density of an ideal gas.

    Arguments:

        p: Pressure in Pa.

        t: Temperature in K.

    Returns:

        The number density :math:`n = p / (k_B T)` in :math:`m^{-3}`.
    """
    p = np.asarray(p, dtype=float)
    t = np.asarray(t, dtype=float)
    if np.any(t <= 0.0):
        raise ValueError("Temperatures must be positive to compute number "
                         "densities.")
    return p / (boltzmann * t)
