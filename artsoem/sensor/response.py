"""
artsoem.sensor.response
-----------------------

Functions that construct the transfer matrices from which the sensor
response matrix is assembled.

All transfer matrices assume piecewise linear functions: a spectrum
given on a frequency grid, or an antenna pattern given on an angular
grid, is understood as the linear interpolant of its values. With this
assumption the response of an instrument to a spectrum can be expressed
*exactly* as a vector product, see :func:`integration_vector`.
"""
import numpy as np
import scipy as sp
import scipy.sparse


def _check_ascending(grid, name, min_size=2):
    grid = np.asarray(grid, dtype=float).ravel()
    if grid.size < min_size:
        raise ValueError("The {} must contain at least {} points."
                         .format(name, min_size))
    if not np.all(np.diff(grid) > 0.0):
        raise ValueError("The {} must be strictly increasing.".format(name))
    return grid


def _interpolation_row(grid, x):
    """
    Indices and weights of the two grid points that linear interpolation
    of :code:`grid` at :code:`x` is based on.
    """
    n = grid.size
    if x < grid[0] or x > grid[-1]:
        raise ValueError("Frequency {} lies outside the frequency grid "
                         "[{}, {}].".format(x, grid[0], grid[-1]))
    k = min(max(np.searchsorted(grid, x, side="right") - 1, 0), n - 2)
    fd = (x - grid[k]) / (grid[k + 1] - grid[k])
    return np.array([k, k + 1]), np.array([1.0 - fd, fd])


def integration_vector(f, x_f, x_g):
    """
    Calculate the row vector :math:`\\mathbf{h}` that approximates the
    integral of the product of two functions as a vector product

    .. math::

        \\mathbf{h}^T \\mathbf{g} = \\int f(x) g(x)\\ dx,

    where :math:`\\mathbf{g}` holds the values of :math:`g` on the grid
    :code:`x_g`. The result is exact if :math:`f` and :math:`g` are
    linear between their grid points.

    The integral extends over the overlap of the two grids; :math:`f` is
    zero outside of :code:`x_f`.

    Arguments:

        f: Values of the function :math:`f` on :code:`x_f`.

        x_f: Strictly increasing grid of :math:`f`.

        x_g: Strictly increasing grid of :math:`g`.

    Returns:

        Vector of the same length as :code:`x_g`.
    """
    x_f = _check_ascending(x_f, "grid of f")
    x_g = _check_ascending(x_g, "grid of g")
    f = np.asarray(f, dtype=float).ravel()
    if f.size != x_f.size:
        raise ValueError("The function values and their grid must have the "
                         "same length.")

    h = np.zeros(x_g.size)

    lower = max(x_f[0], x_g[0])
    upper = min(x_f[-1], x_g[-1])
    if lower >= upper:
        return h

    x_ref = np.union1d(x_f, x_g)
    x_ref = x_ref[np.logical_and(x_ref >= lower, x_ref <= upper)]
    a = x_ref[:-1]
    b = x_ref[1:]
    dx = b - a

    f_a = np.interp(a, x_f, f)
    f_b = np.interp(b, x_f, f)

    # Interval of x_g that contains [a, b].
    k = np.searchsorted(x_g, 0.5 * (a + b), side="right") - 1
    k = np.clip(k, 0, x_g.size - 2)
    dg = x_g[k + 1] - x_g[k]

    # Hat functions of x_g[k] and x_g[k + 1] at a and b.
    w_low_a = (x_g[k + 1] - a) / dg
    w_low_b = (x_g[k + 1] - b) / dg
    w_up_a = (a - x_g[k]) / dg
    w_up_b = (b - x_g[k]) / dg

    def product_integral(u_a, u_b, v_a, v_b):
        return dx / 6.0 * (2.0 * u_a * v_a + u_a * v_b + u_b * v_a
                           + 2.0 * u_b * v_b)

    np.add.at(h, k, product_integral(f_a, f_b, w_low_a, w_low_b))
    np.add.at(h, k + 1, product_integral(f_a, f_b, w_up_a, w_up_b))
    return h

################################################################################
# Antenna
################################################################################

def antenna_diagram_gaussian(za_grid, fwhm):
    """
    Standardised Gaussian antenna pattern.

    Arguments:

        za_grid: Zenith angle offsets from the boresight in degrees.

        fwhm(:code:`float`): The full width at half maximum of the beam in
            degrees.

    Returns:

        The antenna pattern, normalised to 1 at the boresight.
    """
    if fwhm <= 0.0:
        raise ValueError("The beam width must be positive.")
    za_grid = np.asarray(za_grid, dtype=float)
    return np.exp(-4.0 * np.log(2.0) * (za_grid / fwhm) ** 2)


def scale_antenna_diagram(a, f_ref, f_new):
    """
    Scale an antenna pattern given for frequency :code:`f_ref` to
    frequency :code:`f_new`.
    """
    if f_ref <= 0.0:
        raise ValueError("The reference frequency must be positive.")
    return np.asarray(a, dtype=float) ** (f_new / f_ref)


def antenna_transfer_matrix(mblock_za,
                            a,
                            x_a,
                            f_grid,
                            f_ref = None,
                            normalize = True):
    """
    Antenna transfer matrix for a 1D antenna.

    The matrix acts on spectra for the pencil beam directions in
    :code:`mblock_za`, stacked so that element :code:`i + j * n_f` holds
    frequency :code:`i` of direction :code:`j`. Each row holds the
    integration vector of the antenna pattern over the measurement block
    grid for a single frequency.

    Arguments:

        mblock_za: Strictly increasing zenith angle offsets of the pencil
            beam calculations in degrees.

        a: Values of the antenna pattern.

        x_a: Strictly increasing grid of the antenna pattern in degrees.

        f_grid: The frequency grid.

        f_ref(:code:`float`): If given, the pattern is assumed to be valid
            for this frequency and is scaled to each frequency in
            :code:`f_grid` using :func:`scale_antenna_diagram`.

        normalize(:code:`bool`): Whether to normalise each row to sum one.

    Returns:

        :code:`scipy.sparse.csr_matrix` of shape
        :code:`(n_f, n_f * n_za)`.
    """
    mblock_za = np.asarray(mblock_za, dtype=float).ravel()
    f_grid = np.asarray(f_grid, dtype=float).ravel()
    n_za = mblock_za.size
    n_f = f_grid.size

    if n_za == 1:
        return sp.sparse.identity(n_f, format="csr")

    mblock_za = _check_ascending(mblock_za, "measurement block grid")
    x_a = _check_ascending(x_a, "antenna pattern grid")

    rows, cols, data = [], [], []
    for i, f in enumerate(f_grid):
        if f_ref is None:
            pattern = a
        else:
            pattern = scale_antenna_diagram(a, f_ref, f)
        h = integration_vector(pattern, x_a, mblock_za)

        if normalize:
            s = h.sum()
            if s <= 0.0:
                raise ValueError("The antenna pattern does not overlap with "
                                 "the measurement block grid.")
            h = h / s

        j = np.nonzero(h)[0]
        rows += [np.full(j.size, i)]
        cols += [i + j * n_f]
        data += [h[j]]

    return sp.sparse.csr_matrix((np.concatenate(data),
                                 (np.concatenate(rows), np.concatenate(cols))),
                                shape=(n_f, n_f * n_za))

################################################################################
# Mixer
################################################################################

def mixer_matrix(f_grid, lo, filter_grid, filter_values, normalize = True):
    """
    Transfer matrix of a heterodyne mixer with a sideband filter.

    The intermediate frequency (IF) grid is formed by the distinct values of
    :math:`|f - f_{LO}|` for which both image frequencies
    :math:`f_{LO} \\pm f_{IF}` lie inside the frequency grid and the filter
    grid. The signal at a given IF is the sum of both image frequencies
    weighted with the filter response.

    Arguments:

        f_grid: Strictly increasing frequency grid.

        lo(:code:`float`): The local oscillator frequency.

        filter_grid: Strictly increasing frequency grid of the sideband
            filter, relative to the local oscillator.

        filter_values: The filter response on :code:`filter_grid`.

        normalize(:code:`bool`): Whether to normalise each row to sum one.

    Returns:

        Tuple :code:`(H, f_if)` of the :code:`scipy.sparse.csr_matrix`
        transfer matrix and the IF grid.
    """
    f_grid = _check_ascending(f_grid, "frequency grid")
    filter_grid = _check_ascending(filter_grid, "sideband filter grid")
    filter_values = np.asarray(filter_values, dtype=float).ravel()
    if filter_values.size != filter_grid.size:
        raise ValueError("The sideband filter values and grid must have the "
                         "same length.")

    f_if = np.unique(np.abs(f_grid - lo))
    valid = np.logical_and.reduce([lo - f_if >= f_grid[0],
                                   lo + f_if <= f_grid[-1],
                                   -f_if >= filter_grid[0],
                                   f_if <= filter_grid[-1]])
    f_if = f_if[valid]
    if f_if.size == 0:
        raise ValueError("No intermediate frequencies are covered by both "
                         "sidebands of the frequency grid and the filter.")

    rows, cols, data = [], [], []
    for i, f in enumerate(f_if):
        row = np.zeros(f_grid.size)
        for image in [-f, f]:
            w = np.interp(image, filter_grid, filter_values)
            inds, weights = _interpolation_row(f_grid, lo + image)
            row[inds] += w * weights

        if normalize:
            s = row.sum()
            if s <= 0.0:
                raise ValueError("The sideband filter is zero at the "
                                 "intermediate frequency {}.".format(f))
            row = row / s

        j = np.nonzero(row)[0]
        rows += [np.full(j.size, i)]
        cols += [j]
        data += [row[j]]

    h = sp.sparse.csr_matrix((np.concatenate(data),
                              (np.concatenate(rows), np.concatenate(cols))),
                             shape=(f_if.size, f_grid.size))
    return h, f_if

################################################################################
# Backend
################################################################################

def channel_response_flat(resolution):
    """
    Rectangular channel response of the given width.

    Returns:

        Tuple :code:`(grid, response)` relative to the channel centre.
    """
    if resolution <= 0.0:
        raise ValueError("The channel resolution must be positive.")
    return np.array([-0.5, 0.5]) * resolution, np.ones(2)


def channel_response_gaussian(fwhm, xwidth_si = 3.0, dx_si = 0.1):
    """
    Gaussian channel response.

    Arguments:

        fwhm(:code:`float`): Full width at half maximum of the response.

        xwidth_si(:code:`float`): Half width of the grid in standard
            deviations.

        dx_si(:code:`float`): Grid spacing in standard deviations.

    Returns:

        Tuple :code:`(grid, response)` relative to the channel centre.
    """
    if fwhm <= 0.0:
        raise ValueError("The channel width must be positive.")
    si = fwhm / (2.0 * np.sqrt(2.0 * np.log(2.0)))
    n = int(np.round(2.0 * xwidth_si / dx_si)) + 1
    x = np.linspace(-xwidth_si, xwidth_si, n) * si
    return x, np.exp(-0.5 * (x / si) ** 2)


def backend_matrix(f_grid,
                   ch_f,
                   ch_response_grid,
                   ch_response,
                   normalize = True):
    """
    Transfer matrix of a spectrometer.

    Arguments:

        f_grid: Strictly increasing frequency grid of the incoming spectrum.

        ch_f: The channel centre frequencies.

        ch_response_grid: Grid of the channel response relative to the
            channel centre. Either a single grid used for all channels or a
            list with one grid per channel.

        ch_response: The channel response(s) matching
            :code:`ch_response_grid`.

        normalize(:code:`bool`): Whether to normalise each row to sum one.

    Returns:

        :code:`scipy.sparse.csr_matrix` of shape :code:`(n_ch, n_f)`.
    """
    f_grid = _check_ascending(f_grid, "frequency grid")
    ch_f = np.atleast_1d(np.asarray(ch_f, dtype=float))
    n_ch = ch_f.size

    if isinstance(ch_response_grid, (list, tuple)):
        if len(ch_response_grid) != n_ch or len(ch_response) != n_ch:
            raise ValueError("When channel responses are given per channel, "
                             "one response is required for each channel.")
        grids = ch_response_grid
        responses = ch_response
    else:
        grids = [ch_response_grid] * n_ch
        responses = [ch_response] * n_ch

    rows, cols, data = [], [], []
    for i, (f_c, g, r) in enumerate(zip(ch_f, grids, responses)):
        g = np.asarray(g, dtype=float) + f_c
        h = integration_vector(r, g, f_grid)

        if normalize:
            s = h.sum()
            if s <= 0.0:
                raise ValueError("The response of channel {} at {} does not "
                                 "overlap with the frequency grid."
                                 .format(i, f_c))
            h = h / s

        j = np.nonzero(h)[0]
        rows += [np.full(j.size, i)]
        cols += [j]
        data += [h[j]]

    return sp.sparse.csr_matrix((np.concatenate(data),
                                 (np.concatenate(rows), np.concatenate(cols))),
                                shape=(n_ch, f_grid.size))

################################################################################
# Side-band channels
################################################################################

def sideband_response(center_frequencies, offsets, order = "positive"):
    """
    Frequency grid and response matrix for paired side-band channels.

    Each channel is given by a centre frequency and an offset. A channel
    with positive offset :math:`o` around centre :math:`f` receives equal
    contributions from :math:`f - o` and :math:`f + o`, a channel with
    zero offset is the monochromatic centre frequency.

    Arguments:

        center_frequencies: List of centre frequencies of the sensor.

        offsets: List of lists of offsets for each centre frequency.

        order(:code:`str`): :code:`"positive"` to order the channels of each
            centre frequency by increasing offset, :code:`"negative"` for
            decreasing offset.

    Returns:

        Tuple :code:`(f_grid, H, channel_f)` of the monochromatic frequency
        grid, the :code:`scipy.sparse.csr_matrix` response matrix and the
        lower side-band frequency of each channel.
    """
    if order not in ["positive", "negative"]:
        raise ValueError("The channel order must be 'positive' or "
                         "'negative'.")
    if len(center_frequencies) != len(offsets):
        raise ValueError("One list of offsets is required for each centre "
                         "frequency.")

    f_grid = []
    data = []
    rows = []
    cols = []
    channel_f = []

    ci = 0
    for f, ofs in zip(center_frequencies, offsets):
        ofs = np.sort(np.atleast_1d(np.asarray(ofs, dtype=float)))
        if np.any(ofs < 0.0):
            raise ValueError("Side-band offsets must be non-negative.")
        n = ofs.size

        ch_rows = ci + np.arange(n)
        if order == "negative":
            ch_rows = ch_rows[::-1]

        # Lower side bands, centre, upper side bands: ascending frequencies.
        bands = [(k, f - o, 0.5) for k, o in enumerate(ofs) if o > 0.0][::-1]
        bands += [(k, f, 1.0) for k, o in enumerate(ofs) if o == 0.0]
        bands += [(k, f + o, 0.5) for k, o in enumerate(ofs) if o > 0.0]

        for k, fs, w in bands:
            rows += [ch_rows[k]]
            cols += [len(f_grid)]
            data += [w]
            f_grid += [fs]

        ch_f = f - ofs
        if order == "negative":
            ch_f = ch_f[::-1]
        channel_f += list(ch_f)
        ci += n

    h = sp.sparse.csr_matrix((data, (rows, cols)), shape=(ci, len(f_grid)))
    return np.array(f_grid), h, np.array(channel_f)
