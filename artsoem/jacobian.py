"""
artsoem.jacobian
----------------

The :code:`jacobian` module describes the quantities that make up the
state vector of a retrieval and the transformations that may be applied
to them.

A :class:`JacobianQuantity` identifies a part of the atmospheric state
(temperature or the amount of an absorption species) and the grids on
which it is represented in the state vector. The quantities are stacked
into the state vector in the order in which they are given; the position
of each quantity is obtained with :func:`jacobian_indices`.

Transformations
===============

Retrieval quantities can be retrieved in a transformed space, e.g. in
:math:`\\log_{10}` space. Transformations are represented by subclasses of
:class:`Transformation`, which must implement the forward transformation
(:code:`__call__`), its inverse (:code:`invert`) and the derivative of the
forward transformation (:code:`derivative`). The derivative is used to
transform Jacobians computed w.r.t. the physical quantity into the
transformed space.

Reference
=========
"""
from abc import ABCMeta, abstractmethod

import numpy as np

################################################################################
# Transformations
################################################################################

class Transformation(metaclass = ABCMeta):
    """
    Abstract base class for transformations of Jacobian quantities.

    Transformation objects should be callable and calling them should apply
    the transformation to a given numeric argument.
    """
    def __init__(self):
        pass

    @abstractmethod
    def __call__(self, x):
        pass

    @abstractmethod
    def invert(self, y):
        pass

    @abstractmethod
    def derivative(self, x):
        """
        Derivative of the forward transformation evaluated at the
        untransformed value :code:`x`.
        """
        pass


class Log10(Transformation):
    """
    The decadal logarithm transformation $f(x) = \\log_{10}(x)$.
    """
    def __init__(self, minimum = 1e-20):
        Transformation.__init__(self)
        self.minimum = minimum

    def __call__(self, x):
        return np.log10(np.maximum(x, self.minimum))

    def invert(self, y):
        return 10.0 ** y

    def derivative(self, x):
        return 1.0 / (np.maximum(x, self.minimum) * np.log(10.0))


class Log(Transformation):
    """
    The natural logarithm transformation $f(x) = \\log(x)$.
    """
    def __init__(self):
        pass

    def __call__(self, x):
        return np.log(x)

    def invert(self, y):
        return np.exp(y)

    def derivative(self, x):
        return 1.0 / np.asarray(x)


class Atanh(Transformation):
    """
    Hyperbolic area tangent transformation mapping the interval
    :code:`[z_min, z_max]` onto the real line. Values are clipped to
    the interval before the transformation is applied.
    """
    def __init__(self, z_min = 0.0, z_max = 1.2):
        Transformation.__init__(self)
        if not z_max > z_min:
            raise ValueError("z_max must be larger than z_min.")
        self.z_min = z_min
        self.z_max = z_max

    def _clip(self, x):
        x = np.minimum(x, 0.99 * self.z_max)
        return np.maximum(x, self.z_min)

    def __call__(self, x):
        x = self._clip(x)
        return np.arctanh(2.0 * (x - self.z_min) / (self.z_max - self.z_min) - 1)

    def invert(self, y):
        return (np.tanh(y) + 1) * 0.5 * (self.z_max - self.z_min) + self.z_min

    def derivative(self, x):
        dz = self.z_max - self.z_min
        u = 2.0 * (self._clip(x) - self.z_min) / dz - 1.0
        return 2.0 / (dz * (1.0 - u ** 2))


class Identity(Transformation):
    """
    The identity transformation $f(x) = x$.
    """
    def __init__(self):
        pass

    def __call__(self, x):
        return x

    def invert(self, y):
        return y

    def derivative(self, x):
        return np.ones_like(np.asarray(x, dtype=float))


class Composition(Transformation):
    """
    Composition of multiple transformations.

    The forward transformation is applied left to right
    as provided to the constructor.

    Arguments:
        *args: Sequence of transformations.
    """
    def __init__(self, *args):
        if not all([isinstance(a, Transformation) for a in args]):
            raise ValueError("All provided transformation must implement the "
                             "abstract base class.")
        self.transformations = args

    def __call__(self, x):
        for t in self.transformations:
            x = t(x)
        return x

    def invert(self, y):
        for t in self.transformations[::-1]:
            y = t.invert(y)
        return y

    def derivative(self, x):
        d = np.ones_like(np.asarray(x, dtype=float))
        for t in self.transformations:
            d = d * t.derivative(x)
            x = t(x)
        return d

################################################################################
# JacobianQuantity
################################################################################

TEMPERATURE = "Temperature"
ABSORPTION_SPECIES = "Absorption species"
SPECIES_MODES = ["rel", "vmr", "nd"]


class JacobianQuantity:
    """
    A part of the atmospheric state that is represented in the state vector.

    Attributes:

        maintag(:code:`str`): The kind of quantity, :code:`"Temperature"`
            or :code:`"Absorption species"`.

        subtag(:code:`str`): The name of the absorption species. Empty for
            temperature.

        mode(:code:`str`): How absorption species are represented, one of
            :code:`"rel"` (relative to the a priori), :code:`"vmr"` (volume
            mixing ratio) or :code:`"nd"` (number density).

        grids(:code:`list`): The retrieval grids. A pressure grid followed
            by latitude and longitude grids depending on the dimensionality
            of the atmosphere.

        transformation(:class:`Transformation`): Transformation applied to
            the quantity in the state vector.
    """
    def __init__(self,
                 maintag,
                 subtag = "",
                 mode = "",
                 p_grid = None,
                 lat_grid = None,
                 lon_grid = None,
                 transformation = None):

        if maintag == TEMPERATURE:
            if subtag or mode:
                raise ValueError("Temperature quantities take neither subtag "
                                 "nor mode.")
        elif maintag == ABSORPTION_SPECIES:
            if not subtag:
                raise ValueError("Absorption species quantities require the "
                                 "name of the species as subtag.")
            if mode not in SPECIES_MODES:
                raise ValueError("The mode of absorption species quantities "
                                 "must be one of {}, not '{}'."
                                 .format(SPECIES_MODES, mode))
        else:
            raise ValueError("Unknown Jacobian quantity '{}'.".format(maintag))

        self.maintag = maintag
        self.subtag = subtag
        self.mode = mode

        if p_grid is None:
            raise ValueError("A retrieval pressure grid is required.")
        p_grid = np.asarray(p_grid, dtype=float).ravel()
        if p_grid.size == 0 or np.any(p_grid <= 0.0):
            raise ValueError("The retrieval pressure grid must be non-empty "
                             "and strictly positive.")
        if p_grid.size > 1 and not np.all(np.diff(p_grid) < 0.0):
            raise ValueError("The retrieval pressure grid must be strictly "
                             "decreasing.")

        self.grids = [p_grid]
        for g, name in [(lat_grid, "latitude"), (lon_grid, "longitude")]:
            if g is None:
                break
            g = np.asarray(g, dtype=float).ravel()
            if g.size > 1 and not np.all(np.diff(g) > 0.0):
                raise ValueError("The retrieval {} grid must be strictly "
                                 "increasing.".format(name))
            self.grids += [g]

        if transformation is None:
            transformation = Identity()
        self.transformation = transformation

    @classmethod
    def temperature(cls, p_grid, lat_grid = None, lon_grid = None,
                    transformation = None):
        """Create a temperature quantity."""
        return cls(TEMPERATURE, p_grid = p_grid, lat_grid = lat_grid,
                   lon_grid = lon_grid, transformation = transformation)

    @classmethod
    def absorption_species(cls, species, mode, p_grid, lat_grid = None,
                           lon_grid = None, transformation = None):
        """Create a quantity for the absorption species :code:`species`."""
        return cls(ABSORPTION_SPECIES, subtag = species, mode = mode,
                   p_grid = p_grid, lat_grid = lat_grid, lon_grid = lon_grid,
                   transformation = transformation)

    @property
    def name(self):
        """
        Name of the quantity used to look up data provider methods:
        :code:`"temperature"` or the name of the species.
        """
        if self.maintag == TEMPERATURE:
            return "temperature"
        return self.subtag

    @property
    def p_grid(self):
        return self.grids[0]

    @property
    def grid_shape(self):
        """Shape of the quantity on its retrieval grids."""
        shape = [g.size for g in self.grids]
        return tuple(shape + [1] * (3 - len(shape)))

    @property
    def n_elements(self):
        """Number of elements of the quantity in the state vector."""
        return int(np.prod([g.size for g in self.grids]))

    def __repr__(self):
        if self.maintag == TEMPERATURE:
            return "JacobianQuantity(Temperature)"
        return "JacobianQuantity({}, {}, {})".format(self.maintag,
                                                     self.subtag,
                                                     self.mode)


def jacobian_indices(quantities):
    """
    Positions of the Jacobian quantities in the state vector.

    Arguments:

        quantities: List of :class:`JacobianQuantity` objects in the order
            in which they are stacked in the state vector.

    Returns:

        List holding for each quantity the inclusive pair
        :code:`[first, last]` of indices in the state vector.
    """
    indices = []
    i = 0
    for q in quantities:
        n = q.n_elements
        indices += [[i, i + n - 1]]
        i += n
    return indices


def transform_jacobian(jacobian, x, quantities, indices):
    """
    Transform a Jacobian w.r.t. the physical quantities into a Jacobian
    w.r.t. the transformed state vector.

    Arguments:

        jacobian: Jacobian w.r.t. the untransformed quantities.

        x: The state vector in transformed space.

        quantities: The :class:`JacobianQuantity` objects of the state
            vector.

        indices: The state vector indices as returned by
            :func:`jacobian_indices`.

    Returns:

        The transformed Jacobian as new array.
    """
    jacobian = np.array(jacobian, dtype=float)
    for q, (i, j) in zip(quantities, indices):
        t = q.transformation
        if isinstance(t, Identity):
            continue
        x_q = t.invert(x[i : j + 1])
        jacobian[:, i : j + 1] /= t.derivative(x_q).reshape(1, -1)
    return jacobian
