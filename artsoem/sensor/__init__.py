"""
The :code:`sensor` module bundles the construction of sensor response
matrices and provides a set of predefined sensor objects.
"""
from artsoem.sensor.sensor import ICI, MWI, Sensor
