import sys
import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from shapely.geometry import (Polygon, MultiPolygon, LineString, MultiLineString, GeometryCollection,
                              LinearRing)


GEOMETRY_COLUMN = "the_geom"


class GeoClimateError(Exception):
    """Base class of the errors raised by the geoclimate processes."""


class PreconditionError(GeoClimateError, ValueError):
    """An input table or parameter does not satisfy what the process needs."""


def empty_frame(columns, crs=None):
    data = {column: pd.Series(dtype="int64") for column in columns}
    data[GEOMETRY_COLUMN] = gpd.GeoSeries([], crs=crs)
    return gpd.GeoDataFrame(data, geometry=GEOMETRY_COLUMN, crs=crs)


def to_frame(geometries, crs=None, **columns):
    """
    Builds a GeoDataFrame whose geometry column is called the_geom.

    Parameters:
    - geometries: iterable of shapely geometries.
    - crs: CRS of the geometries.
    - columns: extra attribute columns, aligned with the geometries.
    """
    data = dict(columns)
    data[GEOMETRY_COLUMN] = list(geometries)
    return gpd.GeoDataFrame(data, geometry=GEOMETRY_COLUMN, crs=crs)


def with_crs(gdf, crs):
    if crs is None:
        return gdf
    return gdf.set_crs(crs, allow_override=True)


def make_valid(gdf):
    gdf = gdf.copy()
    gdf[gdf.geometry.name] = gdf.geometry.make_valid()
    return gdf


def find_column(gdf, name, table=None, required=True):
    """Returns the real name of a column matched case-insensitively."""
    for column in gdf.columns:
        if column.lower() == name.lower():
            return column
    if required:
        if table:
            raise PreconditionError(f"The table {table} must contain the column {name}")
        raise PreconditionError(f"Missing column {name}")
    return None


def column_values(gdf, name, table=None):
    """Values of a column matched case-insensitively, all null when the column is absent."""
    column = find_column(gdf, name, table=table, required=False)
    if column is None:
        return pd.Series(np.nan, index=gdf.index, dtype=object)
    return gdf[column]


def lowered(values):
    return values.astype("string").str.lower()


def to_multiline(geometry):
    """
    Returns the line representation of a geometry as a MultiLineString.
    Polygons are replaced by their boundary, lines are kept and points dropped.
    """
    if geometry is None or geometry.is_empty:
        return None
    if isinstance(geometry, (Polygon, MultiPolygon)):
        lines = shapely.get_parts(geometry.boundary)
    elif isinstance(geometry, (LineString, LinearRing)):
        lines = [LineString(geometry.coords)]
    elif isinstance(geometry, MultiLineString):
        lines = list(geometry.geoms)
    elif isinstance(geometry, GeometryCollection):
        lines = []
        for part in geometry.geoms:
            part_lines = to_multiline(part)
            if part_lines is not None:
                lines.extend(part_lines.geoms)
    else:
        return None
    lines = [line for line in lines if not line.is_empty]
    if not lines:
        return None
    return MultiLineString(lines)


def lines_frame(gdf, crs=None):
    """Converts every geometry of a frame to its multiline representation."""
    if crs is None:
        crs = gdf.crs
    lines = [to_multiline(geometry) for geometry in gdf.geometry]
    return to_frame([line for line in lines if line is not None], crs=crs)


def explode_polygons(geometry):
    """Polygonal parts of a geometry, ignoring points and lines."""
    if geometry is None or geometry.is_empty:
        return []
    return [part for part in shapely.get_parts(geometry) if isinstance(part, Polygon) and not part.is_empty]


def remove_holes(geometry):
    if isinstance(geometry, Polygon):
        return Polygon(geometry.exterior)
    elif isinstance(geometry, MultiPolygon):
        return MultiPolygon([Polygon(poly.exterior) for poly in geometry.geoms])
    return geometry


def join_tables(store, tables, output_table, prefix_with_tab_name=False):
    """
    Joins several tables in one table.

    The first table drives the join, every other table is left joined on its own
    identifier column against the identifier of the first one.

    Parameters:
    - store (GeometryStore): store holding the tables.
    - tables (dict): table name -> name of its identifier column, in join order.
    - output_table (str): name of the resulting table.
    - prefix_with_tab_name (bool): prefix every column with the name of its table.

    Returns:
    - The name of the output table.
    """
    if not tables:
        raise PreconditionError("At least one table is needed to join tables")
    sys.stderr.write(f"\nJoining {len(tables)} tables in {output_table}\n")

    joined = None
    key = None
    for table_name, id_column in tables.items():
        if not store.has_table(table_name):
            raise PreconditionError(f"The table {table_name} does not exist")
        gdf = store.read(table_name)
        id_column = find_column(gdf, id_column, table=table_name)
        if joined is None:
            key = id_column
            if prefix_with_tab_name:
                geometry_name = gdf.geometry.name if isinstance(gdf, gpd.GeoDataFrame) else None
                gdf = gdf.rename(columns={c: f"{table_name}_{c}" for c in gdf.columns if c != geometry_name})
                key = f"{table_name}_{id_column}"
            joined = gdf
        else:
            if isinstance(gdf, gpd.GeoDataFrame):
                gdf = pd.DataFrame(gdf.drop(columns=gdf.geometry.name))
            if prefix_with_tab_name:
                gdf = gdf.rename(columns={c: f"{table_name}_{c}" for c in gdf.columns if c != id_column})
            gdf = gdf.rename(columns={id_column: key})
            joined = joined.merge(gdf, on=key, how="left")

    store.drop(output_table)
    store.write(output_table, joined)
    return output_table
