"""Exceptions specific to artsoem."""


class OEMError(Exception):
    """Raised when an OEM iteration cannot be carried out."""

    pass


class ForwardModelError(OEMError):
    """
    Raised when the forward model returns output that is inconsistent with
    the retrieval setup.
    """

    def __init__(self, name, expected, found):
        super().__init__()
        self.name = name
        self.expected = expected
        self.found = found

    def __str__(self):
        return ("Forward model returned {} with shape {} but {} was "
                "expected.".format(self.name, self.found, self.expected))
