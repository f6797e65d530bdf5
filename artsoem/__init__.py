"""

The :code:`artsoem` package provides the numerical core of ARTS-style
microwave and IR retrievals: the sensor response of a heterodyne or
spectrometer instrument and the optimal estimation method (OEM) used to
invert observations.

Overview
--------

A retrieval in :code:`artsoem` combines three ingredients:

1. A :class:`~artsoem.sensor.Sensor` that describes how pencil-beam
   monochromatic spectra are turned into measured channels. The sensor
   assembles a sparse sensor response matrix from antenna, mixer and
   backend (spectrometer) transfer matrices.

2. A model atmosphere, represented by an
   :class:`~artsoem.atmosphere.AtmosphericState`, together with the
   retrieval quantities that map parts of it onto the state vector
   :math:`\\mathbf{x}`.

3. A forward model, i.e. any Python callable that computes the simulated
   measurement vector :math:`\\mathbf{y}` and, optionally, its Jacobian for
   a given atmospheric state.

The :func:`~artsoem.retrieval.oem` function and the
:class:`~artsoem.retrieval.RetrievalCalculation` class tie these together
and run a linear, Gauss-Newton or Levenberg-Marquardt inversion.

Data flow
---------

A priori data, covariance matrices and observations
are requested from a **data provider**, an object exposing
:code:`get_<name>` methods that are called with the arguments that the
user passes to :code:`run(...)`.
"""
from artsoem.atmosphere import AtmosphericState
from artsoem.sensor import Sensor
from artsoem.retrieval import RetrievalCalculation, oem
