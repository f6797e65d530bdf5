"""
artsoem.io
==========

The `artsoem.io` module provides routines for storing retrieval results.

Results are written to NetCDF4 files with one group per retrieval run.
Retrieval cases are identified by the positional arguments passed to
:meth:`RetrievalCalculation.run`, which are used as indices along
user-defined dimensions of the output file.
"""
import logging
import os
from copy import copy

import numpy as np
from netCDF4 import Dataset

logger = logging.getLogger(__name__)


class OutputFile:
    """
    Class to store results from retrieval calculations to a NetCDF file.
    """
    def __init__(self,
                 filename,
                 dimensions = None,
                 mode = "a",
                 inputs = [],
                 floating_point_format = "f4",
                 full_retrieval_output = True):
        """
        Create output file to store retrieval output to.

        Arguments:

            filename(str): Path of the output file.
            dimensions(list): List of tuples :code:`(n, s, o)` containing
                for each dimension over which retrievals will be performed
                its name :code:`n`, its size :code:`s` (negative for an
                unlimited dimension) and the offset :code:`o` that is
                subtracted from the corresponding argument.
            mode(str): String describing the mode to open the output file.
                With mode :code:`"wb"` an existing file is replaced,
                otherwise results are added to it.
            inputs: List of tuples :code:`(name, (dim1, ...))` containing the
                names (:code:`name`) of input variables to copy from the
                data provider and names (:code:`dim1, ...`) of the associated
                dimensions.
            floating_point_format(str): The precision to use to store floating
                point numbers (:code:`f4` or :code:`f8`)
            full_retrieval_output(:code:`bool`): Whether or not to include
                full retrieval output (Jacobians, AVK and covariance matrices).
        """
        filename = os.path.expanduser(filename)
        self.filename   = filename
        self.mode       = mode
        if dimensions is None:
            dimensions = []
        self.dimensions = dimensions
        self.f_fp       = floating_point_format
        self.inputs = inputs

        self.full_retrieval_output = full_retrieval_output

        if os.path.isfile(self.filename):
            if mode == "wb":
                os.remove(self.filename)
                self._initialized = False
            else:
                self._initialized = True
        else:
            self._initialized = False

    @property
    def initialized(self):
        return self._initialized

    def _indices(self, args):
        if len(args) < len(self.dimensions):
            raise ValueError("Expected {} index arguments but got {}."
                             .format(len(self.dimensions), len(args)))
        return [a - o for a, (_, _, o) in zip(args, self.dimensions)]

    def _initialize_dimensions(self):
        """
        Initialize compute dimensions in the output file.
        """
        for n, s, _ in self.dimensions:
            if s < 0:
                self.file_handle.createDimension(n, None)
            else:
                self.file_handle.createDimension(n, s)

    @staticmethod
    def _results(retrieval):
        if type(retrieval.results) == list:
            return retrieval.results
        return [retrieval.results]

    def _initialize_retrieval_output(self, retrieval):
        """
        Initialize output file for results from a retrieval
        calculation.

        Arguments:

            retrieval: :class:`RetrievalCalculation` object from which to
                store the results.
        """
        root = self.file_handle
        results = self._results(retrieval)
        state = results[0].state

        #
        # Global dimensions
        #

        atm_dims = ["p", "lat", "lon"][:state.atmosphere_dim]
        for d, s in zip(atm_dims, state.field_shape):
            root.createDimension(d, s)
        root.createDimension("oem_diagnostics", 5)

        #
        # Result groups
        #

        indices = [n for n, _, _ in self.dimensions]

        for r in results:
            group = root.createGroup(r.name)

            for rq in retrieval.retrieval_quantities:
                group.createVariable(rq.name, self.f_fp,
                                     dimensions = tuple(indices + atm_dims))

            group.createVariable("diagnostics", self.f_fp,
                                 dimensions = tuple(indices + ["oem_diagnostics"]))

            # Observations and fit.
            if retrieval.sensors:
                for s in retrieval.sensors:
                    i, j = r.sensor_indices[s.name]
                    d1 = s.name + "_channels"
                    group.createDimension(d1, j - i)
                    group.createVariable("y_" + s.name, self.f_fp,
                                         dimensions = tuple(indices + [d1]))
                    group.createVariable("yf_" + s.name, self.f_fp,
                                         dimensions = tuple(indices + [d1]))
            else:
                group.createDimension("channels", r.y.size)
                group.createVariable("y", self.f_fp,
                                     dimensions = tuple(indices + ["channels"]))
                group.createVariable("yf", self.f_fp,
                                     dimensions = tuple(indices + ["channels"]))

            if self.full_retrieval_output:

                n = sum([rq.n_elements for rq in r.retrieval_quantities])
                m = r.y.size

                group.createDimension("m", m)
                group.createDimension("n", n)

                group.createVariable("G", self.f_fp, dimensions = tuple(indices + ["n", "m"]))
                group.createVariable("A", self.f_fp, dimensions = tuple(indices + ["n", "n"]))
                group.createVariable("covmat_so", self.f_fp, dimensions = tuple(indices + ["n", "n"]))
                group.createVariable("covmat_ss", self.f_fp, dimensions = tuple(indices + ["n", "n"]))
                group.createVariable("jacobian", self.f_fp, dimensions = tuple(indices + ["m", "n"]))

    def _initialize_inputs(self, data_provider, *args, **kwargs):

        self.input_dimensions = {}
        indices = [n for n, _, _ in self.dimensions]
        group = self.file_handle.createGroup("inputs")

        for (v, dims) in self.inputs:

            fget = getattr(data_provider, "get_" + v)
            data = np.asarray(fget(*args, **kwargs))

            if not len(data.squeeze().shape) == len(dims):
                raise ValueError("Shape of input data {} does not match "
                                 "expected dimensions {}.".format(data.shape,
                                                                  dims))

            for d, s in zip(dims, data.squeeze().shape):
                if d in self.input_dimensions:
                    si = self.input_dimensions[d]
                    if si != s:
                        raise ValueError("Dimension {} of input {} is "
                                         "inconsistent with inferred dimension "
                                         "({}).".format(d, v, si))
                else:
                    group.createDimension(d, s)
                    self.input_dimensions[d] = s

            group.createVariable(v, data.dtype, tuple(indices + list(dims)))

    def initialize(self, retrieval, data_provider, *args, **kwargs):
        """
        Initialize output file.

        This creates all necessary dimensions and variables in the NetCDF4
        output file. This function is run automatically before the first
        entry is stored in the file.
        """
        self.file_handle = Dataset(self.filename, mode = "w")

        try:
            self._initialize_dimensions()
            self._initialize_retrieval_output(retrieval)
            if self.inputs:
                self._initialize_inputs(data_provider, *args, **kwargs)
        except Exception:
            self.close()
            os.remove(self.filename)
            logger.error("Initialization of output file %s failed.",
                         self.filename)
            raise
        self.close()
        self._initialized = True
        logger.info("Initialized output file %s.", self.filename)

    def _store_retrieval_results(self, retrieval, args):

        indices = self._indices(args)
        results = self._results(retrieval)
        groups = [self.file_handle.groups[r.name] for r in results]

        for g, r in zip(groups, results):

            #
            # Retrieved quantities
            #

            for rq in retrieval.retrieval_quantities:
                x = r.get_result(rq, interpolate = True, transform_back = True)
                if x is None:
                    x = r.get_xa(rq, interpolate = True, transform_back = True)
                if x is None:
                    continue
                var = g.variables[rq.name]
                var[tuple(indices) + (Ellipsis,)] = x

            var = g.variables["diagnostics"]
            var[tuple(indices) + (slice(0, None),)] = r.oem_diagnostics

            #
            # Observation and fit.
            #

            if retrieval.sensors:
                blocks = [(s.name, r.sensor_indices[s.name])
                          for s in retrieval.sensors]
                blocks = [("_" + n, ij) for n, ij in blocks]
            else:
                blocks = [("", (0, r.y.size))]

            for suffix, (i, j) in blocks:
                var = g["y" + suffix]
                var[tuple(indices) + (slice(0, None),)] = r.y[i : j]
                if r.yf is not None:
                    var = g["yf" + suffix]
                    var[tuple(indices) + (slice(0, None),)] = r.yf[i : j]

            #
            # Remaining retrieval output
            #

            if self.full_retrieval_output and r.status <= 2:
                for name, v in [("A", r.avk),
                                ("G", r.dxdy),
                                ("covmat_ss", r.covmat_ss),
                                ("covmat_so", r.covmat_so),
                                ("jacobian", r.jacobian)]:
                    if v is None or np.size(v) == 0:
                        continue
                    var = g[name]
                    var[tuple(indices) + (slice(0, None),) * 2] = v

    def _store_inputs(self, data_provider, *args, **kwargs):

        if not self.inputs:
            return None
        input_variables = self.file_handle["inputs"]
        indices = self._indices(args)

        for (v, dims) in self.inputs:
            fget = getattr(data_provider, "get_" + v)
            data = np.asarray(fget(*args, **kwargs)).squeeze()

            var = input_variables[v]
            if len(dims) > 0:
                var[tuple(indices) + (Ellipsis,)] = data
            else:
                var[tuple(indices)] = data

    def store_results(self, retrieval, data_provider, *args, **kwargs):
        """
        Store the results of a retrieval calculation.

        Arguments:

            retrieval(:class:`RetrievalCalculation`): The calculation whose
                results to store.

            data_provider: The data provider used for the calculation.

            *args, **kwargs: The arguments with which the calculation was
                run. The positional arguments determine the indices along
                the output dimensions.
        """
        if retrieval.results is None:
            raise ValueError("The retrieval calculation has no results to "
                             "store.")

        if not self.initialized:
            self.initialize(retrieval, data_provider, *args, **kwargs)

        self.open()
        try:
            self._store_retrieval_results(retrieval, args)
            self._store_inputs(data_provider, *args, **kwargs)
        finally:
            self.close()

    def open(self):
        if self.initialized:
            if hasattr(self, "file_handle"):
                if not self.file_handle.isopen():
                    self.file_handle = Dataset(self.filename, mode = "r+")
            else:
                self.file_handle = Dataset(self.filename, mode = "r+")

    def close(self):
        if hasattr(self, "file_handle") and self.file_handle.isopen():
            self.file_handle.close()

    def __getstate__(self):
        state = copy(self.__dict__)
        state.pop("file_handle", None)
        return state

    def __setstate__(self, state):
        self.__dict__.update(state)
