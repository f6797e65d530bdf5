"""
artsoem.interpolation
---------------------

Grid positions and linear interpolation.

Interpolation in :code:`artsoem` is split into two steps: First the
position of each point of a new grid relative to an old grid is
determined (:func:`gridpos`), then values given on the old grid are
interpolated using these positions (:func:`interp`,
:func:`regrid_atmfield_by_gp`). Splitting the two steps allows the same
grid positions to be reused for several fields, which is how retrieval
quantities are mapped between atmospheric and retrieval grids.

A grid position consists of an index :code:`idx` of the old grid point
"below" the new point and the fractional distance :code:`fd` to the
next old grid point. "Below" refers to the order of the old grid: for a
descending old grid, such as a pressure grid, the value at :code:`idx`
is numerically *larger* than the interpolation point. Examples:

::

    old grid = 2 3      old grid = 3 2
    new grid = 2.25     new grid = 2.25
    idx      = 0        idx      = 0
    fd       = 0.25     fd       = 0.75
"""
import numpy as np


class GridPos:
    """
    Grid positions of a new grid relative to an old grid.

    Attributes:

        idx(:code:`numpy.ndarray`): Indices of the old grid point below
            each point of the new grid.

        fd(:code:`numpy.ndarray`): Fractional distance to the next point
            of the old grid. Values outside [0, 1] represent
            extrapolation.
    """
    def __init__(self, idx, fd):
        self.idx = np.atleast_1d(np.asarray(idx, dtype=int))
        self.fd = np.atleast_1d(np.asarray(fd, dtype=float))
        if self.idx.shape != self.fd.shape:
            raise ValueError("Indices and fractional distances of grid "
                             "positions must have the same shape.")

    @property
    def fd1(self):
        """The complementary fractional distance :math:`1 - fd`."""
        return 1.0 - self.fd

    def __len__(self):
        return self.idx.size

    def __getitem__(self, i):
        return GridPos(self.idx[i], self.fd[i])

    def __repr__(self):
        return "GridPos(idx={}, fd={})".format(self.idx, self.fd)


def _check_grid(grid, name):
    grid = np.asarray(grid, dtype=float).ravel()
    if grid.size < 2:
        raise ValueError("The {} must contain at least two points."
                         .format(name))
    dg = np.diff(grid)
    if np.all(dg > 0.0):
        return grid, False
    if np.all(dg < 0.0):
        return grid, True
    raise ValueError("The {} must be strictly increasing or strictly "
                     "decreasing.".format(name))


def gridpos(old_grid, new_grid, extpolfac=0.5):
    """
    Compute grid positions of :code:`new_grid` relative to
    :code:`old_grid`.

    Arguments:

        old_grid: The strictly monotonic grid on which data is given.

        new_grid: The points to interpolate to. Need not be sorted.

        extpolfac(:code:`float`): How far points may lie outside of the old
            grid, given as a multiple of the spacing of the outermost
            interval. Use :code:`numpy.inf` to allow unlimited
            extrapolation.

    Returns:

        :class:`GridPos` object with one entry per point in
        :code:`new_grid`.

    Raises:

        ValueError if the old grid is not strictly monotonic or if a point
        of the new grid lies too far outside of the old grid.
    """
    old_grid, descending = _check_grid(old_grid, "old grid")
    new_grid = np.atleast_1d(np.asarray(new_grid, dtype=float)).ravel()
    n = old_grid.size

    if descending:
        g = old_grid[::-1]
    else:
        g = old_grid

    lower = g[0] - extpolfac * (g[1] - g[0])
    upper = g[-1] + extpolfac * (g[-1] - g[-2])
    outside = np.logical_or(new_grid < lower, new_grid > upper)
    if np.any(outside):
        raise ValueError("Point {} of the new grid lies outside the allowed "
                         "extrapolation range [{}, {}] of the old grid."
                         .format(new_grid[outside][0], lower, upper))

    idx = np.searchsorted(g, new_grid, side="right") - 1
    idx = np.clip(idx, 0, n - 2)
    fd = (new_grid - g[idx]) / (g[idx + 1] - g[idx])

    if descending:
        idx = n - 2 - idx
        fd = 1.0 - fd

    return GridPos(idx, fd)


def p2gridpos(old_pgrid, new_pgrid, extpolfac=0.5):
    """
    Grid positions for pressure grids. Works as :func:`gridpos` but
    interpolates in the logarithm of the pressure.
    """
    old_pgrid = np.asarray(old_pgrid, dtype=float)
    new_pgrid = np.asarray(new_pgrid, dtype=float)
    if np.any(old_pgrid <= 0.0) or np.any(new_pgrid <= 0.0):
        raise ValueError("Pressure grids must be strictly positive.")
    return gridpos(np.log(old_pgrid), np.log(new_pgrid), extpolfac)


def gp4length1grid(n):
    """
    Grid positions for interpolation from an old grid with a single
    point, i.e. every point of the new grid takes the only value.
    """
    return GridPos(np.zeros(n, dtype=int), np.zeros(n))


def jacobian_type_extrapol(gp):
    """
    Turn linear extrapolation into constant extrapolation.

    Fractional distances are clamped to [0, 1], so that points outside the
    old grid take the value of the closest end point.
    """
    return GridPos(gp.idx, np.clip(gp.fd, 0.0, 1.0))


def interp_axis(a, gp, axis=0):
    """
    Linear interpolation of array :code:`a` along a given axis.

    Arguments:

        a: The array holding the data on the old grid along :code:`axis`.

        gp(:class:`GridPos`): Grid positions of the new grid.

        axis(:code:`int`): The axis to interpolate.

    Returns:

        Array with the same shape as :code:`a` except along :code:`axis`,
        which has the length of :code:`gp`.
    """
    a = np.asarray(a, dtype=float)
    n = a.shape[axis]
    if np.any(gp.idx < 0) or np.any(gp.idx > max(n - 2, 0)):
        raise ValueError("Grid positions do not match the size {} of axis "
                         "{}.".format(n, axis))
    i_low = gp.idx
    i_high = np.minimum(gp.idx + 1, n - 1)

    shape = [1] * a.ndim
    shape[axis] = -1
    w = gp.fd.reshape(shape)

    return (1.0 - w) * np.take(a, i_low, axis=axis) \
        + w * np.take(a, i_high, axis=axis)


def interp(a, gp):
    """
    Linear interpolation of a vector using precomputed grid positions.
    """
    a = np.asarray(a, dtype=float).ravel()
    return interp_axis(a, gp, axis=0)


def regrid_atmfield_by_gp(field, atmosphere_dim, gp_p, gp_lat=None, gp_lon=None):
    """
    Regrid an atmospheric field using precomputed grid positions.

    Only the leading :code:`atmosphere_dim` dimensions are interpolated,
    trailing dimensions of an atmospheric field in fewer than three
    dimensions have length 1.

    Arguments:

        field: Array of shape :code:`(n_p, n_lat, n_lon)`.

        atmosphere_dim(:code:`int`): Dimensionality of the atmosphere.

        gp_p: Pressure grid positions.

        gp_lat: Latitude grid positions, required if
            :code:`atmosphere_dim >= 2`.

        gp_lon: Longitude grid positions, required if
            :code:`atmosphere_dim == 3`.

    Returns:

        The regridded field with shape
        :code:`(len(gp_p), len(gp_lat), len(gp_lon))`, where missing grid
        positions count as length 1.
    """
    field = np.asarray(field, dtype=float)
    if field.ndim != 3:
        raise ValueError("Atmospheric fields must have three dimensions.")
    if atmosphere_dim not in [1, 2, 3]:
        raise ValueError("The atmosphere dimension must be 1, 2 or 3.")

    result = interp_axis(field, gp_p, axis=0)
    if atmosphere_dim >= 2:
        if gp_lat is None:
            raise ValueError("Latitude grid positions are required for "
                             "atmospheres with dimension >= 2.")
        result = interp_axis(result, gp_lat, axis=1)
    if atmosphere_dim >= 3:
        if gp_lon is None:
            raise ValueError("Longitude grid positions are required for "
                             "3D atmospheres.")
        result = interp_axis(result, gp_lon, axis=2)
    return result
