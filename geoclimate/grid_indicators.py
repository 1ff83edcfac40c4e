import sys
import numpy as np
import pandas as pd
import shapely
from shapely.geometry import box
from tqdm import tqdm
from geoclimate.utils import (PreconditionError, empty_frame, to_frame, find_column,
                              explode_polygons, remove_holes)
from geoclimate.store import prefix

WARM_LCZ = [1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 105]
COOL_LCZ = [101, 102, 103, 104, 106, 107]

# Weight used to choose between LCZ types having the same number of cells,
# the lowest weight wins. Types not listed keep their own code as weight.
DEFAULT_LCZ_WEIGHTS = {105: 11, 107: 12, 106: 13, 101: 14, 102: 15, 103: 16, 104: 16}

# Offsets (row, col) of the 8 adjacent cells, the rows grow northward
DIRECTIONS = {
    'N': (1, 0),
    'NE': (1, 1),
    'E': (0, 1),
    'SE': (-1, 1),
    'S': (-1, 0),
    'SW': (-1, -1),
    'W': (0, -1),
    'NW': (1, -1),
}

GRID_OFFSET = 3
MAX_LEVELS = 9


def level_indices(rows, cols, level):
    """
    Row and column indices of the coarse cell containing each base cell at a level.
    The column index is shifted by the level so that the indices differ between levels.
    """
    factor = GRID_OFFSET ** level
    rows = np.asarray(rows, dtype="int64")
    cols = np.asarray(cols, dtype="int64")
    return np.abs(rows - 1) // factor + 1, np.abs(cols - 1) // factor + level - 1


def neighbour_values(lookup, rows, cols, d_row, d_col, index=None):
    """
    Values of the lookup (a Series indexed by row and col) at the adjacent cells.
    Missing cells give null values.
    """
    keys = pd.MultiIndex.from_arrays([np.asarray(rows) + d_row, np.asarray(cols) + d_col])
    values = lookup.reindex(keys)
    return values.set_axis(index if index is not None else pd.RangeIndex(len(values)))


def cell_lookup(values, rows, cols):
    lookup = pd.Series(values, index=pd.MultiIndex.from_arrays([rows, cols]))
    return lookup[~lookup.index.duplicated(keep='first')]


def level_columns(level):
    columns = [f"LCZ_PRIMARY_LOD_{level}"]
    columns += [f"LCZ_PRIMARY_{d}_LOD_{level}" for d in DIRECTIONS]
    columns += [f"LCZ_WARM_LOD_{level}", f"LCZ_COOL_LOD_{level}"]
    columns += [f"LCZ_WARM_{d}_LOD_{level}" for d in DIRECTIONS]
    return columns


def lcz_weight(lcz, lcz_weights):
    return lcz_weights.get(int(lcz), int(lcz))


def representative_lcz(frame, row_lod, col_lod, lcz_column, lcz_weights):
    """
    Representative LCZ of each coarse cell.

    The LCZ with the highest number of cells is kept, ties are broken by the lowest
    weight and then by the lowest LCZ code. The number of warm and cool cells of each
    coarse cell is returned too.

    Returns:
    - DataFrame indexed by (row_lod, col_lod) with the columns lcz, warm and cool.
    """
    known = frame[frame[lcz_column].notna()]
    counts = known.groupby([row_lod, col_lod, lcz_column]).size().rename('count').reset_index()
    if counts.empty:
        return pd.DataFrame({'lcz': pd.array([], dtype="Int64"), 'warm': pd.array([], dtype="Int64"),
                             'cool': pd.array([], dtype="Int64")},
                            index=pd.MultiIndex.from_arrays([[], []], names=[row_lod, col_lod]))

    counts['weight'] = [lcz_weight(lcz, lcz_weights) for lcz in counts[lcz_column]]
    counts = counts.sort_values([row_lod, col_lod, 'count', 'weight', lcz_column],
                                ascending=[True, True, False, True, True])
    mode = counts.drop_duplicates([row_lod, col_lod], keep='first').set_index([row_lod, col_lod])

    warm = counts[counts[lcz_column].isin(WARM_LCZ)].groupby([row_lod, col_lod])['count'].sum()
    cool = counts[counts[lcz_column].isin(COOL_LCZ)].groupby([row_lod, col_lod])['count'].sum()

    return pd.DataFrame({
        'lcz': mode[lcz_column].astype("Int64"),
        'warm': warm.reindex(mode.index).fillna(0).astype("Int64"),
        'cool': cool.reindex(mode.index).fillna(0).astype("Int64"),
    }, index=mode.index)


def aggregate_level(frame, level, lcz_column, lcz_weights):
    """Columns of one level of detail for every coarse cell, with its 8 adjacent coarse cells"""
    row_lod, col_lod = f"ID_ROW_LOD_{level}", f"ID_COL_LOD_{level}"
    selected = representative_lcz(frame, row_lod, col_lod, lcz_column, lcz_weights)

    rows = selected.index.get_level_values(0).to_numpy(dtype="int64")
    cols = selected.index.get_level_values(1).to_numpy(dtype="int64")
    result = pd.DataFrame({row_lod: rows, col_lod: cols})
    result[f"LCZ_PRIMARY_LOD_{level}"] = selected['lcz'].to_numpy()
    for direction, (d_row, d_col) in DIRECTIONS.items():
        result[f"LCZ_PRIMARY_{direction}_LOD_{level}"] = neighbour_values(selected['lcz'], rows, cols, d_row, d_col)
    result[f"LCZ_WARM_LOD_{level}"] = selected['warm'].to_numpy()
    result[f"LCZ_COOL_LOD_{level}"] = selected['cool'].to_numpy()
    for direction, (d_row, d_col) in DIRECTIONS.items():
        result[f"LCZ_WARM_{direction}_LOD_{level}"] = neighbour_values(selected['warm'], rows, cols, d_row, d_col)
    return result


def aggregate_lcz_levels(grid, id_grid="id_grid", nb_levels=1, lcz_weights=None):
    """
    Aggregates the LCZ of a grid over nb_levels coarser grids.

    At level i, a coarse cell gathers 3^i x 3^i base cells. For every base cell the
    output holds the index of its coarse cell at each level, the LCZ of its 8 adjacent
    cells, the number of warm cells around it (LCZ_WARM) and, per level, the
    representative LCZ of its coarse cell with the same values for the adjacent coarse
    cells. A coarse cell without any LCZ value gets null values for its level.

    Parameters:
    - grid (DataFrame): cells with LCZ_PRIMARY, ID_ROW, ID_COL (or ID_COLUMN) and id_grid.
    - id_grid (str): identifier of the cells.
    - nb_levels (int): number of levels, between 1 and 9.
    - lcz_weights (dict): LCZ -> weight used to break the ties, DEFAULT_LCZ_WEIGHTS by default.

    Returns:
    - A copy of the grid with the new columns, in the order of the input rows.
    """
    if nb_levels is None or int(nb_levels) != nb_levels or not 1 <= nb_levels <= MAX_LEVELS:
        raise PreconditionError(f"The number of levels to aggregate the LCZ values must be between 1 and "
                                f"{MAX_LEVELS}, got {nb_levels}")
    nb_levels = int(nb_levels)
    lcz_weights = DEFAULT_LCZ_WEIGHTS if lcz_weights is None else lcz_weights

    lcz_column = find_column(grid, "LCZ_PRIMARY", table="grid_indicators")
    row_column = find_column(grid, "ID_ROW", table="grid_indicators")
    col_column = find_column(grid, "ID_COL", required=False) or find_column(grid, "ID_COLUMN",
                                                                            table="grid_indicators")
    find_column(grid, id_grid, table="grid_indicators")

    frame = grid.copy()
    frame[lcz_column] = pd.to_numeric(frame[lcz_column]).astype("Int64")
    rows = frame[row_column].to_numpy(dtype="int64")
    cols = frame[col_column].to_numpy(dtype="int64")

    for level in range(1, nb_levels + 1):
        row_lod, col_lod = level_indices(rows, cols, level)
        frame[f"ID_ROW_LOD_{level}"] = row_lod
        frame[f"ID_COL_LOD_{level}"] = col_lod

    lookup = cell_lookup(frame[lcz_column].array, rows, cols)
    warm_count = frame[lcz_column].isin(WARM_LCZ).to_numpy(dtype="int64")
    for direction, (d_row, d_col) in DIRECTIONS.items():
        values = neighbour_values(lookup, rows, cols, d_row, d_col, index=frame.index)
        frame[f"LCZ_PRIMARY_{direction}"] = values
        warm_count = warm_count + values.isin(WARM_LCZ).to_numpy(dtype="int64")
    frame["LCZ_WARM"] = warm_count

    for level in tqdm(range(1, nb_levels + 1), desc="Aggregating the LCZ levels..."):
        keys = [f"ID_ROW_LOD_{level}", f"ID_COL_LOD_{level}"]
        level_frame = aggregate_level(frame, level, lcz_column, lcz_weights)
        merged = frame.merge(level_frame, how='left', on=keys)
        merged.index = frame.index
        frame = merged
        for column in level_columns(level):
            frame[column] = frame[column].astype("Int64")

    return frame


def multiscale_lcz_grid(store, grid_indicators, id_grid="id_grid", nb_levels=1, lcz_weights=None, prefix_name=""):
    """
    Creates a multi-scale grid and aggregates the LCZ_PRIMARY values for each level.

    Parameters:
    - store (GeometryStore): store holding the grid.
    - grid_indicators (str): grid table with LCZ_PRIMARY, ID_ROW, ID_COL and id_grid.
    - id_grid (str): identifier of the cells.
    - nb_levels (int): number of aggregation levels, between 1 and 9.
    - lcz_weights (dict): weights used to break the ties between LCZ types.
    - prefix_name (str): prefix of the output table.

    Returns:
    - The name of the aggregated grid table.
    """
    if not grid_indicators or not store.has_table(grid_indicators):
        raise PreconditionError(f"No grid_indicators table {grid_indicators} to aggregate the LCZ values")

    grid = store.read(grid_indicators)
    sys.stderr.write(f"\nAggregating the LCZ of {len(grid)} cells of {grid_indicators} over {nb_levels} levels\n")
    aggregated = aggregate_lcz_levels(grid, id_grid=id_grid, nb_levels=nb_levels, lcz_weights=lcz_weights)

    output_table = prefix(prefix_name, "multiscale_lcz_grid")
    store.drop(output_table)
    store.write(output_table, aggregated)
    return output_table


def numbered_polygons(geometries, crs):
    geometries = list(geometries)
    return to_frame(geometries, crs=crs, id=np.arange(1, len(geometries) + 1, dtype="int64"))


def mitre_buffer(geometries, distance):
    return shapely.buffer(geometries, distance, quad_segs=2, cap_style="flat", join_style="mitre", mitre_limit=2)


def sprawl_areas(store, grid_indicators, distance=100, prefix_name=""):
    """
    Computes the sprawl areas: continuous areas of urban LCZ cells having at least one
    other urban cell around them.

    Parameters:
    - store (GeometryStore): store holding the grid.
    - grid_indicators (str): grid with LCZ_PRIMARY and LCZ_WARM, as built by multiscale_lcz_grid.
    - distance (float): areas fully eroded by this distance are removed, the other ones
      are dilated and eroded by it to fill their small gaps. 0 keeps the raw areas.
    - prefix_name (str): prefix of the output table.

    Returns:
    - The name of a table (id, the_geom).
    """
    if not grid_indicators or not store.has_table(grid_indicators):
        raise PreconditionError("No grid_indicators table to compute the sprawl areas layer")
    if distance is None or distance < 0:
        raise PreconditionError(f"Please set a distance greater or equal than 0, got {distance}")
    grid = store.read(grid_indicators)
    if grid.empty:
        raise PreconditionError(f"No grid cells in {grid_indicators} to compute the sprawl areas layer")
    lcz = pd.to_numeric(grid[find_column(grid, "LCZ_PRIMARY", table=grid_indicators)])
    warm = pd.to_numeric(grid[find_column(grid, "LCZ_WARM", table=grid_indicators)])

    sys.stderr.write(f"\nComputing the sprawl areas of {grid_indicators}\n")
    urban = grid[((warm >= 2) & lcz.notna() & ~lcz.isin(COOL_LCZ)).to_numpy(dtype=bool)]
    areas = [remove_holes(polygon) for polygon in explode_polygons(shapely.union_all(urban.geometry.to_numpy()))]

    if distance > 0 and areas:
        areas = [area for area in areas if not shapely.buffer(area, -distance).is_empty]
        if areas:
            dilated = shapely.union_all(mitre_buffer(np.asarray(areas, dtype=object), distance))
            areas = explode_polygons(remove_holes(mitre_buffer(dilated, -distance)))

    output_table = prefix(prefix_name, "sprawl_areas")
    store.drop(output_table)
    store.write(output_table, numbered_polygons(areas, crs=grid.crs))
    return output_table


def cool_areas(store, grid_indicators, distance=100, prefix_name=""):
    """
    Extracts the cool areas: continuous areas of vegetation and water LCZ cells.
    Areas fully eroded by a negative buffer of distance are removed when distance > 0.

    Returns:
    - The name of a table (id, the_geom).
    """
    if not grid_indicators or not store.has_table(grid_indicators):
        raise PreconditionError("No grid_indicators table to extract the cool areas layer")
    grid = store.read(grid_indicators)
    lcz = pd.to_numeric(grid[find_column(grid, "LCZ_PRIMARY", table=grid_indicators)])

    sys.stderr.write(f"\nExtracting the cool areas of {grid_indicators}\n")
    cool = grid[lcz.isin(COOL_LCZ).to_numpy(dtype=bool)]
    areas = explode_polygons(shapely.union_all(cool.geometry.to_numpy())) if not cool.empty else []
    if distance and distance > 0:
        areas = [area for area in areas if not shapely.buffer(area, -distance).is_empty]

    output_table = prefix(prefix_name, "cool_areas")
    store.drop(output_table)
    store.write(output_table, numbered_polygons(areas, crs=grid.crs))
    return output_table


def inverse_polygons_layer(store, input_polygons, prefix_name=""):
    """
    Difference between the extent of a layer and its polygons.

    Returns:
    - The name of a table (id, the_geom) with the parts of the extent not covered.
    """
    if not input_polygons or not store.has_table(input_polygons):
        raise PreconditionError(f"The table {input_polygons} does not exist")
    polygons = store.read(input_polygons)
    output_table = prefix(prefix_name, "inverse_geometries")
    store.drop(output_table)

    geometries = polygons.geometry[polygons.geometry.notna() & ~polygons.geometry.is_empty]
    if geometries.empty:
        store.write(output_table, empty_frame(['id'], crs=polygons.crs))
        return output_table

    extent = box(*geometries.total_bounds)
    surfaces = geometries[shapely.get_dimensions(geometries.to_numpy()) == 2]
    inverse = shapely.difference(extent, shapely.union_all(surfaces.to_numpy())) if not surfaces.empty else extent
    store.write(output_table, numbered_polygons(explode_polygons(inverse), crs=polygons.crs))
    return output_table
