from setuptools import setup, find_packages
from os import path

here = path.abspath(path.dirname(__file__))
with open(path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='artsoem',  # Required
    version='0.1.0',  # Required
    description='Sensor response modeling and optimal estimation retrievals for microwave and IR remote sensing.',
    long_description=long_description,
    long_description_content_type='text/markdown',  # Optional (see note above)
    install_requires=["numpy",
                      "scipy",
                      "xarray",
                      "netCDF4",
                      "typhon",
                      "matplotlib"],
    extras_require={"test": ["pytest"]},
    packages=find_packages(exclude=['examples', 'doc', 'misc', 'tests']),
    python_requires='>=3.6',
)
