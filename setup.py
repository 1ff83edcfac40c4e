import pathlib
from setuptools import find_packages, setup

HERE = pathlib.Path(__file__).parent

VERSION = '0.1.0'
PACKAGE_NAME = 'geoclimate'
AUTHOR = 'GeoClimate developers'
AUTHOR_EMAIL = 'geoclimate@example.org'
URL = 'https://github.com/orbisgis/geoclimate'

LICENSE = 'LGPL-3.0'
DESCRIPTION = 'Spatial units, blocks, grids and multiscale LCZ aggregation for urban climate studies.'
LONG_DESCRIPTION = (HERE / "README.md").read_text(
    encoding='utf-8')
LONG_DESC_TYPE = "text/markdown"

INSTALL_REQUIRES = [
    'fiona>=1.9.6',
    'geopandas>=1.0',
    'networkx>=3.2',
    'numpy>=1.26.4',
    'pandas>=2.2.2',
    'pyproj>=3.6.1',
    'shapely>=2.0.4',
    'tqdm>=4.66'
]

EXTRAS_REQUIRE = {
    'test': ['pytest>=8.0']
}

setup(
    name=PACKAGE_NAME,
    version=VERSION,
    description=DESCRIPTION,
    long_description=LONG_DESCRIPTION,
    long_description_content_type=LONG_DESC_TYPE,
    author=AUTHOR,
    author_email=AUTHOR_EMAIL,
    url=URL,
    install_requires=INSTALL_REQUIRES,
    extras_require=EXTRAS_REQUIRE,
    license=LICENSE,
    packages=find_packages(include=['geoclimate', 'geoclimate.*']),
    include_package_data=True
)
