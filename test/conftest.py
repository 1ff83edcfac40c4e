import pytest
from shapely.geometry import box
from geoclimate.store import MemoryStore
from geoclimate.utils import to_frame

CRS = "EPSG:2154"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def zone_store():
    """Store with a 1000 x 1000 zone"""
    store = MemoryStore()
    store.write("zone", to_frame([box(0, 0, 1000, 1000)], crs=CRS, id_zone=["zone"]))
    return store


def frame(geometries, **columns):
    return to_frame(geometries, crs=CRS, **columns)
