""" Sensors

The :class:`Sensor` class collects the description of an instrument and
assembles its sensor response matrix. The sensor response matrix maps
monochromatic pencil-beam spectra onto the measured channels.

A sensor is described by the following stages, applied in this order:

1. Antenna: Pencil-beam spectra calculated for the zenith angle offsets
   in :code:`mblock_dlos_grid` are weighted with the antenna pattern. After
   this stage only the boresight direction is left.

2. Mixer: A heterodyne mixer converts the radio frequency spectrum to an
   intermediate frequency (IF) grid, adding up both sidebands weighted
   with the sideband filter.

3. Backend: A spectrometer integrates the spectrum over the channel
   responses.

Stages that are not configured are skipped. Alternatively to mixer and
backend, a sensor can be described by paired side-band channels
(:meth:`Sensor.set_sideband_channels`) which is how many conical and
cross-track scanners are modelled.

Spectra are expected to be stacked with the Stokes dimension running
fastest, then frequency, then line-of-sight offset. The same ordering
applies to the rows of the sensor response matrix.
"""
import logging

import numpy as np
import scipy as sp
import scipy.sparse

from artsoem.sensor.response import (antenna_diagram_gaussian,
                                     antenna_transfer_matrix,
                                     backend_matrix,
                                     mixer_matrix,
                                     sideband_response)

logger = logging.getLogger(__name__)

################################################################################
# Sensor
################################################################################

class Sensor:
    """
    A passive microwave or IR sensor.

    Attributes:

        name(:code:`str`): Name used to identify the sensor, for example in
            output files.

        f_grid(:code:`numpy.ndarray`): The monochromatic frequency grid.

        mblock_dlos_grid(:code:`numpy.ndarray`): Zenith angle offsets of the
            pencil beam calculations with respect to the boresight.

        sensor_line_of_sight(:code:`numpy.ndarray`): Matrix of boresight
            directions with one row per measurement block.

        sensor_position(:code:`numpy.ndarray`): Matrix of sensor positions
            with one row per measurement block.

        sensor_norm(:code:`bool`): Whether to normalise the responses of
            all stages.

        nedt: Noise equivalent temperature difference for each channel of
            the sensor.
    """
    def __init__(self,
                 name,
                 f_grid = None,
                 stokes_dimension = 1,
                 mblock_dlos_grid = None,
                 nedt = None):
        self.name = name
        self.f_grid = f_grid
        self.stokes_dimension = stokes_dimension

        if mblock_dlos_grid is None:
            mblock_dlos_grid = np.zeros(1)
        self.mblock_dlos_grid = np.asarray(mblock_dlos_grid, dtype=float).ravel()

        self.sensor_position = np.array([[600e3]])
        self.sensor_line_of_sight = np.array([[180.0]])
        self.sensor_norm = True
        self.nedt = nedt

        self._antenna = None
        self._mixer = None
        self._backend = None
        self._sideband = None

        self.sensor_response = None
        self.sensor_response_f_grid = None
        self.sensor_response_dlos_grid = None
        self.sensor_response_f = None
        self.sensor_response_dlos = None
        self.sensor_response_pol = None

    #
    # Properties
    #

    @property
    def f_grid(self):
        """The monochromatic frequency grid of the sensor."""
        return self._f_grid

    @f_grid.setter
    def f_grid(self, f):
        if f is None:
            self._f_grid = None
        else:
            self._f_grid = np.atleast_1d(np.asarray(f, dtype=float))
        self.sensor_response = None

    @property
    def stokes_dimension(self):
        """The number of Stokes components of the simulated spectra."""
        return self._stokes_dimension

    @stokes_dimension.setter
    def stokes_dimension(self, n):
        if not (n in [1, 2, 4]):
            raise ValueError("Stokes dimension must be 1, 2 or 4.")
        self._stokes_dimension = n

    @property
    def views(self):
        """The number of measurement blocks."""
        return self.sensor_line_of_sight.shape[0]

    @property
    def n_channels(self):
        """The number of rows of the sensor response of a single view."""
        if self.sensor_response is None:
            self.setup()
        return self.sensor_response.shape[0]

    @property
    def y_vector_length(self):
        """Length of the measurement vector of all views."""
        return self.views * self.n_channels

    #
    # Configuration of sensor stages
    #

    def set_antenna(self, za_grid, pattern = None, fwhm = None, f_ref = None):
        """
        Set a 1D antenna pattern.

        Arguments:

            za_grid: Zenith angle offsets of the pattern in degrees.

            pattern: The antenna pattern on :code:`za_grid`. If not given, a
                Gaussian pattern with beam width :code:`fwhm` is used.

            fwhm(:code:`float`): Full width at half maximum in degrees of a
                Gaussian antenna pattern.

            f_ref(:code:`float`): Frequency for which the pattern is valid.
                If given the pattern is scaled to the frequencies of the
                sensor.
        """
        za_grid = np.asarray(za_grid, dtype=float).ravel()
        if pattern is None:
            if fwhm is None:
                raise ValueError("Either an antenna pattern or a beam width "
                                 "must be provided.")
            pattern = antenna_diagram_gaussian(za_grid, fwhm)
        pattern = np.asarray(pattern, dtype=float).ravel()
        if pattern.size != za_grid.size:
            raise ValueError("The antenna pattern and its grid must have the "
                             "same length.")
        self._antenna = (za_grid, pattern, f_ref)
        self.sensor_response = None

    def set_mixer(self, lo, filter_grid, filter_values):
        """
        Set a heterodyne mixer.

        Arguments:

            lo(:code:`float`): The local oscillator frequency.

            filter_grid: Grid of the sideband filter relative to the LO
                frequency.

            filter_values: The sideband filter response.
        """
        if self._sideband is not None:
            raise ValueError("A mixer can't be combined with side-band "
                             "channels.")
        self._mixer = (lo, filter_grid, filter_values)
        self.sensor_response = None

    def set_backend(self, channel_frequencies, response_grid, response):
        """
        Set a spectrometer backend.

        Arguments:

            channel_frequencies: The channel centre frequencies. If a mixer
                is used, these are intermediate frequencies.

            response_grid: Grid(s) of the channel response(s) relative to
                the channel centre.

            response: The channel response(s).
        """
        if self._sideband is not None:
            raise ValueError("A backend can't be combined with side-band "
                             "channels.")
        self._backend = (np.atleast_1d(np.asarray(channel_frequencies,
                                                  dtype=float)),
                         response_grid,
                         response)
        self.sensor_response = None

    def set_sideband_channels(self,
                              center_frequencies,
                              offsets,
                              order = "positive"):
        """
        Describe the channels of the sensor as paired side-band channels.

        This sets the frequency grid of the sensor.

        Arguments:

            center_frequencies: List of centre frequencies.

            offsets: List of lists of side-band offsets for each centre
                frequency.

            order(:code:`str`): Channel order, see
                :func:`artsoem.sensor.response.sideband_response`.
        """
        if self._mixer is not None or self._backend is not None:
            raise ValueError("Side-band channels can't be combined with a "
                             "mixer or a backend.")
        f_grid, h, channel_f = sideband_response(center_frequencies,
                                                 offsets,
                                                 order = order)
        self.f_grid = f_grid
        self._sideband = (h, channel_f)

    #
    # Sensor response
    #

    def setup(self):
        """
        Assemble the sensor response matrix.

        Sets the :code:`sensor_response` attribute to the product of the
        transfer matrices of all configured stages and updates the grids
        describing its rows.

        Returns:

            The sensor response as :code:`scipy.sparse.csr_matrix`.
        """
        if self.f_grid is None:
            raise ValueError("The frequency grid of sensor {} has not been "
                             "set.".format(self.name))

        f = self.f_grid
        dlos = self.mblock_dlos_grid
        n_dlos = dlos.size

        h = sp.sparse.identity(f.size * n_dlos, format="csr")

        if self._antenna is not None:
            za_grid, pattern, f_ref = self._antenna
            h_a = antenna_transfer_matrix(dlos, pattern, za_grid, f,
                                          f_ref = f_ref,
                                          normalize = self.sensor_norm)
            h = h_a @ h
            dlos = np.zeros(1)
            n_dlos = 1
        elif n_dlos > 1:
            logger.debug("Sensor %s has %d line-of-sight offsets but no "
                         "antenna, spectra are passed through.",
                         self.name, n_dlos)

        identity = sp.sparse.identity(n_dlos, format="csr")

        if self._mixer is not None:
            lo, filter_grid, filter_values = self._mixer
            h_m, f = mixer_matrix(f, lo, filter_grid, filter_values,
                                  normalize = self.sensor_norm)
            h = sp.sparse.kron(identity, h_m) @ h

        if self._backend is not None:
            ch_f, response_grid, response = self._backend
            h_b = backend_matrix(f, ch_f, response_grid, response,
                                 normalize = self.sensor_norm)
            h = sp.sparse.kron(identity, h_b) @ h
            f = ch_f

        if self._sideband is not None:
            h_s, f = self._sideband
            h = sp.sparse.kron(identity, h_s) @ h

        n_stokes = self.stokes_dimension
        if n_stokes > 1:
            h = sp.sparse.kron(h, sp.sparse.identity(n_stokes))

        self.sensor_response = sp.sparse.csr_matrix(h)
        self.sensor_response_f_grid = np.copy(f)
        self.sensor_response_dlos_grid = np.copy(dlos)
        self.sensor_response_f = np.tile(np.repeat(f, n_stokes), n_dlos)
        self.sensor_response_dlos = np.repeat(dlos, f.size * n_stokes)
        self.sensor_response_pol = np.tile(np.arange(n_stokes), f.size * n_dlos)

        logger.info("Sensor response of sensor %s has shape %s.",
                    self.name, self.sensor_response.shape)
        return self.sensor_response

    def apply(self, iy):
        """
        Apply the sensor response to pencil-beam spectra.

        Arguments:

            iy: Pencil beam spectra, either of a single view as vector or of
                all views as matrix with one row per view.

        Returns:

            The measurement vector with the results of all views
            concatenated.
        """
        if self.sensor_response is None:
            self.setup()
        iy = np.asarray(iy, dtype=float)
        n = self.sensor_response.shape[1]
        if iy.size % n != 0:
            raise ValueError("The size {} of the provided spectra is not a "
                             "multiple of the number of columns of the sensor "
                             "response ({}).".format(iy.size, n))
        iy = iy.reshape(-1, n)
        return np.concatenate([self.sensor_response @ s for s in iy])

    def noise_vector(self):
        """
        Standard deviation of the measurement noise for each element of the
        measurement vector.
        """
        if self.nedt is None:
            raise ValueError("No NEDT values have been set for sensor {}."
                             .format(self.name))
        if self.sensor_response is None:
            self.setup()
        nedt = np.broadcast_to(np.asarray(self.nedt, dtype=float),
                               self.sensor_response_f_grid.shape)
        n_dlos = self.sensor_response_dlos_grid.size
        sigma = np.tile(np.repeat(nedt, self.stokes_dimension), n_dlos)
        return np.tile(sigma, self.views)

################################################################################
# Ice cloud imager (ICI).
################################################################################

class ICI(Sensor):
    """
    The Ice Cloud Imager (ICI) sensor.

    Attributes:

        center_frequencies(:code:`numpy.ndarray`): Centre frequencies of the
            side-band channels.

        offsets(:code:`list`): Side-band offsets for each centre frequency.

        nedt(:code:`numpy.ndarray`): Noise equivalent temperature
            differences for the channels.
    """
    center_frequencies = np.array([183.31e9, 243.2e9, 325.15e9, 448.0e9,
                                   664.0e9])
    offsets = [[8.4e9, 3.4e9, 2.0e9],
               [2.5e9],
               [9.5e9, 3.5e9, 1.5e9],
               [7.2e9, 3.0e9, 1.4e9],
               [4.2e9]]

    nedt = np.array([0.8, 0.8, 0.8,       # 183 GHz
                     0.7 * np.sqrt(0.5),  # 243 GHz
                     1.2, 1.3, 1.5,       # 325 GHz
                     1.4, 1.6, 2.0,       # 448 GHz
                     1.6 * np.sqrt(0.5)]) # 664 GHz

    def __init__(self,
                 name = "ici",
                 stokes_dimension = 1,
                 lines_of_sight = None,
                 positions = None):
        """
        Arguments:

            name(:code:`str`): The name of the sensor.

            stokes_dimension(:code:`int`): The Stokes dimension of the
                simulated spectra.

            lines_of_sight: Optional matrix of boresight directions.

            positions: Optional matrix of sensor positions.
        """
        super().__init__(name, stokes_dimension = stokes_dimension,
                         nedt = ICI.nedt)
        self.set_sideband_channels(ICI.center_frequencies,
                                   ICI.offsets,
                                   order = "negative")

        self.sensor_position = np.array([[600e3]])
        self.sensor_line_of_sight = np.array([[135.0]])
        if lines_of_sight is not None:
            self.sensor_line_of_sight = np.asarray(lines_of_sight)
        if positions is not None:
            self.sensor_position = np.asarray(positions)

################################################################################
# Microwave imager (MWI).
################################################################################

class MWI(Sensor):
    """
    The Microwave Imager (MWI) sensor.

    Attributes:

        center_frequencies(:code:`numpy.ndarray`): Centre frequencies of the
            channels.

        offsets(:code:`list`): Side-band offsets for each centre frequency.
            Window channels have a single zero offset.

        nedt(:code:`numpy.ndarray`): The noise equivalent temperature
            differences for the channels.
    """
    center_frequencies = np.array([18.7e9, 23.8e9, 31.4e9, 50.3e9, 52.6e9,
                                   53.24e9, 53.75e9, 89.0e9, 118.7503e9,
                                   164.75e9, 183.31e9])
    offsets = [[0.0], [0.0], [0.0], [0.0], [0.0], [0.0], [0.0], [0.0],
               [3.2e9, 2.1e9, 1.4e9, 1.2e9],
               [0.0],
               [7.0e9, 6.1e9, 4.9e9, 3.4e9, 1.3e9]]

    nedt = np.array([0.8 * np.sqrt(0.5), #18 GHz
                     0.7 * np.sqrt(0.5), #24 GHz
                     0.9 * np.sqrt(0.5), #31 GHz
                     1.1 * np.sqrt(0.5), #50 GHz
                     1.1 * np.sqrt(0.5),
                     1.1 * np.sqrt(0.5),
                     1.1 * np.sqrt(0.5),
                     1.1 * np.sqrt(0.5), #89 GHz
                     1.3, #118 GHz
                     1.3,
                     1.3,
                     1.3,
                     1.2, #165 GHz
                     1.3, #183 GHz
                     1.2,
                     1.2,
                     1.2,
                     1.3])

    def __init__(self,
                 name = "mwi",
                 stokes_dimension = 1):
        """
        Arguments:

            name(:code:`str`): The name of the sensor.

            stokes_dimension(:code:`int`): The Stokes dimension of the
                simulated spectra.
        """
        super().__init__(name, stokes_dimension = stokes_dimension,
                         nedt = MWI.nedt)
        self.set_sideband_channels(MWI.center_frequencies,
                                   MWI.offsets,
                                   order = "negative")
