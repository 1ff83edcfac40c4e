import sys
import math
import numpy as np
import geopandas as gpd
import shapely
from shapely.geometry import box
from geopandas import sjoin
from geoclimate.utils import PreconditionError, GEOMETRY_COLUMN, empty_frame, to_frame, find_column
from geoclimate.store import prefix, GRID_COLUMNS


def cell_counts(bounds, delta_x, delta_y, row_col=False):
    """Number of columns and rows of the grid covering the bounds"""
    if row_col:
        return int(delta_x), int(delta_y)
    minx, miny, maxx, maxy = bounds
    # Rounded before ceil so that 1000 / 100 is not read as 10.000000001
    n_cols = math.ceil(round((maxx - minx) / delta_x, 9))
    n_rows = math.ceil(round((maxy - miny) / delta_y, 9))
    return max(n_cols, 1), max(n_rows, 1)


def iter_grid_cells(bounds, delta_x, delta_y, row_col=False):
    """
    Yields the cells of a regular grid as (the_geom, id_grid, id_col, id_row) tuples.

    Rows and columns are numbered from 1 starting at the lower-left corner of the bounds,
    id_grid runs along the columns of a row before moving to the next row.

    Parameters:
    - bounds (tuple): minx, miny, maxx, maxy of the area to cover.
    - delta_x, delta_y (float): size of a cell, or number of columns and rows when
      row_col is True.
    - row_col (bool): read delta_x and delta_y as column and row counts.
    """
    minx, miny, maxx, maxy = bounds
    n_cols, n_rows = cell_counts(bounds, delta_x, delta_y, row_col=row_col)
    if row_col:
        width = (maxx - minx) / n_cols
        height = (maxy - miny) / n_rows
    else:
        width, height = delta_x, delta_y

    id_grid = 1
    for row in range(n_rows):
        y0 = miny + row * height
        for col in range(n_cols):
            x0 = minx + col * width
            yield box(x0, y0, x0 + width, y0 + height), id_grid, col + 1, row + 1
            id_grid += 1


def geometry_and_crs(geometry, crs=None):
    """Single geometry and CRS out of a shapely geometry, a GeoSeries or a GeoDataFrame"""
    if isinstance(geometry, gpd.GeoDataFrame):
        geometry = geometry.geometry
    if isinstance(geometry, gpd.GeoSeries):
        if crs is None:
            crs = geometry.crs
        geometry = shapely.union_all(geometry.dropna().to_numpy()) if len(geometry) else None
    return geometry, crs


def validate_grid_parameters(geometry, delta_x, delta_y, row_col):
    if row_col:
        if delta_x is None or delta_y is None or delta_x < 1 or delta_y < 1:
            raise PreconditionError(f"Invalid grid size padding, the number of columns and rows must be greater "
                                    f"or equal than 1, got {delta_x} and {delta_y}")
        if int(delta_x) != delta_x or int(delta_y) != delta_y:
            raise PreconditionError(f"The number of columns and rows must be integers, got {delta_x} and {delta_y}")
    elif delta_x is None or delta_y is None or delta_x <= 0 or delta_y <= 0:
        raise PreconditionError(f"Invalid grid size padding, the cell size must be greater than 0, "
                                f"got {delta_x} and {delta_y}")
    if geometry is None or geometry.is_empty:
        raise PreconditionError("The envelope is null or empty. Cannot compute the grid")


def make_grid(geometry, delta_x, delta_y, row_col=False, crs=None):
    """GeoDataFrame (the_geom, id_grid, id_col, id_row) of the grid covering the envelope of a geometry"""
    geometry, crs = geometry_and_crs(geometry, crs)
    validate_grid_parameters(geometry, delta_x, delta_y, row_col)
    cells = list(iter_grid_cells(geometry.bounds, delta_x, delta_y, row_col=row_col))
    return gpd.GeoDataFrame([dict(zip(GRID_COLUMNS, cell)) for cell in cells], columns=GRID_COLUMNS,
                            geometry=GEOMETRY_COLUMN, crs=crs)


def create_grid(store, geometry, delta_x, delta_y, row_col=False, prefix_name="", crs=None):
    """
    Creates a regular grid covering the envelope of a geometry.

    Parameters:
    - store (GeometryStore): store where the grid is created.
    - geometry: shapely geometry, GeoSeries or GeoDataFrame defining the envelope.
    - delta_x (float): width of a cell, or number of columns when row_col is True.
    - delta_y (float): height of a cell, or number of rows when row_col is True.
    - row_col (bool): read delta_x and delta_y as column and row counts.
    - prefix_name (str): prefix of the output table.
    - crs: CRS of the grid when the geometry does not carry one.

    Returns:
    - The name of the grid table (the_geom, id_grid, id_col, id_row).
    """
    geometry, crs = geometry_and_crs(geometry, crs)
    validate_grid_parameters(geometry, delta_x, delta_y, row_col)

    output_table = prefix(prefix_name, "grid")
    n_cols, n_rows = cell_counts(geometry.bounds, delta_x, delta_y, row_col=row_col)
    sys.stderr.write(f"\nCreating a grid of {n_cols} columns and {n_rows} rows in {output_table}\n")
    store.drop(output_table)
    store.create_grid(output_table, iter_grid_cells(geometry.bounds, delta_x, delta_y, row_col=row_col), crs=crs)
    return output_table


def grid_distances(store, input_polygons, grid, id_grid, prefix_name=""):
    """
    Distance from the cells of a grid to the edge of the polygons they lie in.

    A cell belongs to a polygon when its point on surface is inside the polygon, its
    distance is measured from its centroid to the boundary of the polygon.

    Returns:
    - The name of a table (the_geom, id, distance).
    """
    if not input_polygons or not store.has_table(input_polygons):
        raise PreconditionError("The input polygons cannot be null or empty")
    if not grid or not store.has_table(grid):
        raise PreconditionError("The grid cannot be null or empty")
    if not id_grid:
        raise PreconditionError("Please set the column name identifier for the grid cells")

    polygons = store.read(input_polygons)
    cells = store.read(grid)
    id_column = find_column(cells, id_grid, table=grid)
    output_table = prefix(prefix_name, "grid_distances")
    store.drop(output_table)

    polygons = polygons[polygons.geometry.notna() & ~polygons.geometry.is_empty].reset_index(drop=True)
    if polygons.empty or cells.empty:
        store.write(output_table, empty_frame(['id', 'distance'], crs=cells.crs))
        return output_table

    points = gpd.GeoDataFrame({'id': cells[id_column].to_numpy(), 'cell_index': np.arange(len(cells))},
                              geometry=cells.geometry.representative_point().to_numpy(), crs=cells.crs)
    joined = sjoin(points, polygons[[polygons.geometry.name]], how='inner', predicate='intersects')

    cell_geometries = cells.geometry.to_numpy()[joined['cell_index'].to_numpy()]
    boundaries = shapely.boundary(polygons.geometry.to_numpy()[joined['index_right'].to_numpy()])
    distances = shapely.distance(shapely.centroid(cell_geometries), boundaries)

    result = to_frame(cell_geometries, crs=cells.crs, id=joined['id'].to_numpy(), distance=distances)
    store.write(output_table, result)
    sys.stderr.write(f"\t{len(result)} distances computed from {grid} to {input_polygons}\n")
    return output_table
