from geoclimate.utils import GeoClimateError, PreconditionError, join_tables
from geoclimate.store import MemoryStore, GeoPackageStore, scratch_tables
from geoclimate.mergers import create_blocks, merge_touching
from geoclimate.spatial_units import prepare_tsu_data, create_tsu, create_rsu, spatial_join
from geoclimate.grid import create_grid, make_grid, grid_distances
from geoclimate.grid_indicators import (multiscale_lcz_grid, aggregate_lcz_levels, sprawl_areas, cool_areas,
                                        inverse_polygons_layer)
from geoclimate.parameters import DEFAULT_PARAMETERS, load_parameters

__version__ = '0.1.0'
