import numpy as np
import pytest

from artsoem.sensor import ICI, MWI, Sensor
from artsoem.sensor.response import channel_response_flat


def test_ici():
    ici = ICI()
    h = ici.setup()
    assert(h.shape == (11, 22))
    assert(ici.n_channels == 11)
    assert(ici.y_vector_length == 11)
    assert(np.allclose(ici.noise_vector(), ICI.nedt))

    y = ici.apply(np.ones(22))
    assert(np.allclose(y, 1.0))

    # Channels are ordered by decreasing offset.
    assert(np.isclose(ici.sensor_response_f_grid[0], 183.31e9 - 8.4e9))
    assert(np.all(np.diff(ici.f_grid) > 0.0))


def test_mwi():
    mwi = MWI()
    h = mwi.setup()
    assert(h.shape == (18, 27))
    assert(mwi.noise_vector().size == 18)
    assert(np.all(np.diff(mwi.f_grid) > 0.0))


def test_stokes_dimension():
    ici = ICI(stokes_dimension = 2)
    h = ici.setup()
    assert(h.shape == (22, 44))
    assert(np.all(ici.sensor_response_pol[:4] == [0, 1, 0, 1]))
    assert(np.allclose(ici.noise_vector()[:2], ICI.nedt[0]))

    with pytest.raises(ValueError):
        Sensor("test", stokes_dimension = 3)


def test_multiple_views():
    ici = ICI(lines_of_sight = [[135.0], [140.0]],
              positions = [[600e3], [600e3]])
    ici.setup()
    assert(ici.views == 2)
    assert(ici.y_vector_length == 22)
    assert(ici.noise_vector().size == 22)

    y = ici.apply(np.ones((2, 22)))
    assert(y.size == 22)

    with pytest.raises(ValueError):
        ici.apply(np.ones(21))


def test_mixer_and_backend():
    sensor = Sensor("heterodyne", f_grid = np.linspace(90.0, 110.0, 41))
    sensor.set_mixer(100.0, [-20.0, 20.0], [1.0, 1.0])
    grid, response = channel_response_flat(1.0)
    sensor.set_backend([2.0, 5.0], grid, response)
    h = sensor.setup()
    assert(h.shape == (2, 41))

    # Spectrum that is linear in the intermediate frequency.
    y = sensor.apply(np.abs(sensor.f_grid - 100.0))
    assert(np.allclose(y, [2.0, 5.0]))
    assert(np.allclose(sensor.sensor_response_f_grid, [2.0, 5.0]))

    with pytest.raises(ValueError):
        sensor.set_sideband_channels([100.0], [[1.0]])


def test_antenna():
    sensor = Sensor("antenna",
                    f_grid = [1e9, 2e9],
                    mblock_dlos_grid = [-1.0, 0.0, 1.0])
    sensor.set_antenna(np.linspace(-3.0, 3.0, 61), fwhm = 1.0)
    h = sensor.setup()
    assert(h.shape == (2, 6))
    assert(np.allclose(sensor.apply(np.ones(6)), 1.0))
    assert(np.all(sensor.sensor_response_dlos_grid == 0.0))

    with pytest.raises(ValueError):
        sensor.set_antenna([0.0, 1.0])


def test_missing_setup():
    sensor = Sensor("empty")
    with pytest.raises(ValueError):
        sensor.setup()
    with pytest.raises(ValueError):
        sensor.n_channels
    with pytest.raises(ValueError):
        Sensor("noiseless", f_grid = [1.0]).noise_vector()
