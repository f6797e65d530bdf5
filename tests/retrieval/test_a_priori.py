import numpy as np
import pytest

from artsoem.jacobian import Log10
from artsoem.retrieval.a_priori import (AltitudeMask, And, DataProviderAPriori,
                                        Diagonal, FixedAPriori, FreezingLevel,
                                        FunctionalAPriori, SensorNoiseAPriori,
                                        SpatialCorrelation, TemperatureMask,
                                        Thikhonov, TropopauseMask)
from artsoem.sensor import ICI


def test_masks(data_provider):
    temperature = data_provider.get_temperature()

    temperature_mask = TemperatureMask(lower_limit = 230.0,
                                       upper_limit = 280.0)
    mask = temperature_mask(data_provider)
    assert(np.all(temperature[mask] >= 230))
    assert(np.all(temperature[mask] < 280))
    assert(np.all(np.where(mask)[0] == np.arange(2, 9)))

    tropopause_mask = TropopauseMask()
    mask = tropopause_mask(data_provider)
    assert(np.all(mask[:21]))
    assert(not np.any(mask[21:]))

    mask = And(temperature_mask, tropopause_mask)(data_provider)
    assert(np.all(temperature[mask] >= 230))
    assert(np.all(temperature[mask] < 280))


def test_inclusive_masks(data_provider):
    mask = TemperatureMask(lower_limit = 230.0,
                           upper_limit = 280.0,
                           lower_inclusive = True,
                           upper_inclusive = True)(data_provider)
    assert(np.all(np.where(mask)[0] == np.arange(1, 10)))

    mask = FreezingLevel()(data_provider)
    assert(not mask[2])
    assert(np.all(mask[3:]))

    mask = FreezingLevel(invert = True)(data_provider)
    assert(np.all(mask[:3]))

    mask = AltitudeMask(0.0, 10e3)(data_provider)
    assert(np.all(mask[:10]))
    assert(not np.any(mask[10:]))


def test_covariances(data_provider):
    z = data_provider.get_altitude()
    diagonal = Diagonal(2)
    diag = diagonal.get_covariance(data_provider)
    assert(np.all(np.isclose(diag.diagonal(), 2.0 * np.ones(z.size))))

    gauss = SpatialCorrelation(diagonal, 1000.0)
    covmat = gauss.get_covariance(data_provider)
    assert(np.all(np.isclose(covmat.diagonal(), 2.0 * np.ones(z.size))))
    assert(np.isclose(covmat[0, 1], 2.0 * np.exp(-1.0)))

    gauss = SpatialCorrelation(diagonal, 1000.0, correlation_type = "gauss")
    covmat = gauss.get_covariance(data_provider)
    assert(np.isclose(covmat[0, 1], 2.0 * np.exp(-1.0)))
    assert(np.isclose(covmat[0, 2], 2.0 * np.exp(-4.0)))

    with pytest.raises(ValueError):
        SpatialCorrelation(diagonal, 1000.0, correlation_type = "linear")

    temperature_mask = TemperatureMask(lower_limit = 230.0,
                                       upper_limit = 280.0)
    thik = Thikhonov(scaling = 1.0, z_scaling = False, mask = temperature_mask)
    precmat = thik.get_precision(data_provider)

    mask = np.logical_not(temperature_mask(data_provider))
    assert(np.all(precmat.diagonal()[mask] >= 1e12))
    mask2 = np.logical_not(mask)[2 : -2]
    assert(np.all(precmat.diagonal()[2:-2][mask2] == 6))

    covmat = thik.get_covariance(data_provider)
    assert(np.allclose(covmat.diagonal(), 1.0 / precmat.diagonal()))


def test_masked_spatial_correlation(data_provider):
    mask = AltitudeMask(0.0, 10e3)
    covmat = SpatialCorrelation(Diagonal(2.0), 1000.0, mask = mask,
                                mask_value = 1e-6).get_covariance(data_provider)
    assert(np.all(covmat[10:, :10] == 0.0))
    assert(np.allclose(np.diag(covmat)[10:], 1e-6))


def test_data_provider_a_priori(data_provider):
    temperature_mask = TemperatureMask(lower_limit = 230.0,
                                       upper_limit = 280.0)
    tropopause_mask = TropopauseMask()
    covariance = Diagonal(2.0, And(temperature_mask, tropopause_mask))
    data_provider.add(DataProviderAPriori("temperature", covariance))

    t = data_provider.get_temperature()
    assert(np.all(data_provider.get_temperature_xa() == t))

    covmat = data_provider.get_temperature_covariance()
    assert(np.all(covmat.diagonal()[2:9] == 2.0))
    assert(np.all(covmat.diagonal()[9:] == 1e-12))


def test_data_provider_a_priori_transformation(data_provider):
    data_provider.add(DataProviderAPriori("H2O", Diagonal(1.0),
                                          transformation = Log10()))
    h2o = data_provider.get_H2O()
    assert(np.allclose(data_provider.get_H2O_xa(), np.log10(h2o)))


def test_fixed_a_priori(data_provider):
    temperature_mask = TemperatureMask(lower_limit = 230.0,
                                       upper_limit = 280.0)
    tropopause_mask = TropopauseMask()
    covariance = Diagonal(2.0, And(temperature_mask, tropopause_mask))
    t = data_provider.get_temperature()
    data_provider.add(FixedAPriori("temperature", t, covariance))

    assert(np.all(data_provider.get_temperature_xa() == t))


def test_fixed_a_priori_mask(data_provider):
    data_provider.add(FixedAPriori("H2O", 1.0, Diagonal(0.1),
                                   mask = AltitudeMask(0.0, 10e3),
                                   mask_value = 0.0))
    xa = data_provider.get_H2O_xa()
    assert(xa.size == 31)
    assert(np.all(xa[:10] == 1.0))
    assert(np.all(xa[10:] == 0.0))
    assert(np.all(data_provider.get_H2O_mask()[:10]))


def test_sensor_noise_a_priori():
    sna = SensorNoiseAPriori([ICI()])
    sna.noise_scaling["ici"] = 2.0
    covmat = sna.get_observation_error_covariance()
    assert(np.allclose((ICI.nedt * 2.0) ** 2.0, covmat.diagonal()))


def test_functional_a_priori(data_provider):
    temperature_mask = TemperatureMask(lower_limit = 230.0,
                                       upper_limit = 280.0)
    tropopause_mask  = TropopauseMask()
    covariance       = Diagonal(2.0, And(temperature_mask, tropopause_mask))

    t = data_provider.get_temperature()
    f = lambda x: x ** 2
    a_priori = FunctionalAPriori("temperature", "temperature", f, covariance)
    data_provider.add(a_priori)
    assert(np.all(np.isclose(t ** 2, data_provider.get_temperature_xa())))


def test_thikhonov_a_priori(data_provider):
    data_provider.add(DataProviderAPriori("temperature", Thikhonov()))
    precmat = data_provider.get_temperature_precision()
    assert(precmat.shape == (31, 31))
    covmat = data_provider.get_temperature_covariance()
    assert(covmat.shape == (31, 31))

    with pytest.raises(ValueError):
        Thikhonov(z_grid = np.array([0.0, 1.0])).get_precision(data_provider)
