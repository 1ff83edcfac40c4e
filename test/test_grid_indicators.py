import numpy as np
import pandas as pd
import pytest
import shapely
from shapely.geometry import box
from geoclimate.grid_indicators import (level_indices, aggregate_lcz_levels, multiscale_lcz_grid, sprawl_areas,
                                        cool_areas, inverse_polygons_layer, level_columns, DIRECTIONS)
from geoclimate.utils import PreconditionError
from conftest import frame


def lcz_grid(n_rows, n_cols, lcz=None, size=100):
    """Grid whose LCZ_PRIMARY is given by lcz(row, col), null when it returns None"""
    rows, cols, geometries, values = [], [], [], []
    for row in range(1, n_rows + 1):
        for col in range(1, n_cols + 1):
            rows.append(row)
            cols.append(col)
            geometries.append(box((col - 1) * size, (row - 1) * size, col * size, row * size))
            values.append(lcz(row, col) if lcz else None)
    return frame(geometries, id_grid=np.arange(1, len(rows) + 1), id_row=rows, id_col=cols,
                 lcz_primary=pd.array(values, dtype="Int64"))


def block_of(codes):
    """3 x 3 grid filled row by row with the codes"""
    return lcz_grid(3, 3, lambda row, col: codes[(row - 1) * 3 + col - 1])


def cell(grid, row, col):
    return grid[(grid['id_row'] == row) & (grid['id_col'] == col)].iloc[0]


def test_level_indices():
    rows, cols = level_indices([1, 3, 4, 9, 10], [1, 3, 4, 9, 10], 1)
    assert rows.tolist() == [1, 1, 2, 3, 4]
    assert cols.tolist() == [0, 0, 1, 2, 3]
    rows, cols = level_indices([1, 3, 4, 9, 10], [1, 3, 4, 9, 10], 2)
    assert rows.tolist() == [1, 1, 1, 1, 2]
    assert cols.tolist() == [1, 1, 1, 1, 2]


def test_levels_are_nested():
    grid = aggregate_lcz_levels(lcz_grid(27, 27, lambda row, col: 1 + (row * col) % 10), nb_levels=3)
    for level in (1, 2):
        finer = [f"ID_ROW_LOD_{level}", f"ID_COL_LOD_{level}"]
        coarser = [f"ID_ROW_LOD_{level + 1}", f"ID_COL_LOD_{level + 1}"]
        parents = grid.groupby(finer)[coarser].nunique()
        assert (parents == 1).all().all()


def test_adjacent_cells_at_base_level():
    grid = aggregate_lcz_levels(block_of([1, 2, 3, 4, 5, 6, 7, 8, 9]))
    center = cell(grid, 2, 2)
    expected = {'N': 8, 'NE': 9, 'E': 6, 'SE': 3, 'S': 2, 'SW': 1, 'W': 4, 'NW': 7}
    assert {d: center[f"LCZ_PRIMARY_{d}"] for d in DIRECTIONS} == expected
    assert center['LCZ_WARM'] == 9

    corner = cell(grid, 1, 1)
    assert pd.isna(corner['LCZ_PRIMARY_S']) and pd.isna(corner['LCZ_PRIMARY_W'])
    assert corner['LCZ_PRIMARY_N'] == 4
    assert corner['LCZ_WARM'] == 4


def test_warm_count_ignores_cool_and_missing_cells():
    grid = aggregate_lcz_levels(block_of([101, 1, 105, None, 2, 102, 104, 10, 107]))
    assert cell(grid, 2, 2)['LCZ_WARM'] == 4


def test_most_frequent_lcz_wins():
    grid = aggregate_lcz_levels(block_of([101, 101, 101, 101, 1, 1, 1, 105, 105]))
    assert (grid['LCZ_PRIMARY_LOD_1'] == 101).all()


def test_tie_between_1_and_105_selects_the_lowest_weight():
    grid = aggregate_lcz_levels(block_of([1, 1, 1, 105, 105, 105, None, None, None]))
    assert (grid['LCZ_PRIMARY_LOD_1'] == 1).all()


def test_tie_between_105_and_101_selects_105():
    grid = aggregate_lcz_levels(block_of([101, 101, 105, 105, None, None, None, None, None]))
    assert (grid['LCZ_PRIMARY_LOD_1'] == 105).all()


def test_tie_with_the_same_weight_selects_the_lowest_code():
    grid = aggregate_lcz_levels(block_of([104, 104, 103, 103, None, None, None, None, None]))
    assert (grid['LCZ_PRIMARY_LOD_1'] == 103).all()


def test_custom_weights():
    grid = aggregate_lcz_levels(block_of([1, 1, 1, 105, 105, 105, None, None, None]), lcz_weights={105: 0})
    assert (grid['LCZ_PRIMARY_LOD_1'] == 105).all()


def test_warm_and_cool_counts_of_a_coarse_cell():
    grid = aggregate_lcz_levels(block_of([1, 1, 1, 1, 105, 105, 101, 106, None]))
    first = grid.iloc[0]
    assert first['LCZ_PRIMARY_LOD_1'] == 1
    assert first['LCZ_WARM_LOD_1'] == 6
    assert first['LCZ_COOL_LOD_1'] == 2


def test_adjacent_coarse_cells():
    def lcz(row, col):
        return {1: 2, 2: 5, 3: 101}[(row - 1) // 3 + 1]

    grid = aggregate_lcz_levels(lcz_grid(9, 3, lcz))
    middle = cell(grid, 5, 2)
    assert middle['LCZ_PRIMARY_LOD_1'] == 5
    assert middle['LCZ_PRIMARY_N_LOD_1'] == 101
    assert middle['LCZ_PRIMARY_S_LOD_1'] == 2
    assert pd.isna(middle['LCZ_PRIMARY_E_LOD_1'])
    assert middle['LCZ_WARM_N_LOD_1'] == 0
    assert middle['LCZ_WARM_S_LOD_1'] == 9
    assert pd.isna(middle['LCZ_WARM_W_LOD_1'])


def test_coarse_cell_without_lcz_is_null():
    grid = aggregate_lcz_levels(lcz_grid(3, 6, lambda row, col: 2 if col <= 3 else None))
    empty = cell(grid, 2, 5)
    for column in level_columns(1):
        assert pd.isna(empty[column])
    assert pd.isna(cell(grid, 2, 2)['LCZ_PRIMARY_E_LOD_1'])
    assert cell(grid, 2, 2)['LCZ_PRIMARY_LOD_1'] == 2
    assert len(grid) == 18


def test_output_keeps_the_input_rows_and_columns():
    base = lcz_grid(9, 9, lambda row, col: 1)
    grid = aggregate_lcz_levels(base, nb_levels=2)
    assert grid['id_grid'].tolist() == base['id_grid'].tolist()
    assert list(grid.columns[:len(base.columns)]) == list(base.columns)
    for level in (1, 2):
        assert set(level_columns(level)) <= set(grid.columns)
    assert grid['LCZ_PRIMARY_LOD_2'].dtype == "Int64"


def test_empty_grid_has_the_full_schema():
    grid = aggregate_lcz_levels(lcz_grid(3, 3).iloc[0:0], nb_levels=2)
    assert grid.empty
    for level in (1, 2):
        assert set(level_columns(level)) <= set(grid.columns)
    assert "LCZ_WARM" in grid.columns


@pytest.mark.parametrize("nb_levels", [0, 10, -1, 1.5])
def test_number_of_levels(nb_levels):
    with pytest.raises(PreconditionError):
        aggregate_lcz_levels(block_of([1] * 9), nb_levels=nb_levels)


@pytest.mark.parametrize("column, message", [("lcz_primary", "LCZ_PRIMARY"), ("id_row", "ID_ROW"),
                                             ("id_col", "ID_COLUMN"), ("id_grid", "id_grid")])
def test_missing_column(column, message):
    with pytest.raises(PreconditionError, match=message):
        aggregate_lcz_levels(block_of([1] * 9).drop(columns=column))


def test_multiscale_lcz_grid(store):
    store.write("grid_lcz", block_of([1] * 9).rename(columns={'id_col': 'ID_COLUMN', 'id_grid': 'cell'}))
    name = multiscale_lcz_grid(store, "grid_lcz", id_grid="cell", prefix_name="city")
    assert name == "city_multiscale_lcz_grid"
    assert (store.read(name)['LCZ_PRIMARY_LOD_1'] == 1).all()


def test_multiscale_lcz_grid_missing_table(store):
    with pytest.raises(PreconditionError):
        multiscale_lcz_grid(store, "grid_lcz")


def urban_grid(store):
    def lcz(row, col):
        if row <= 5 and col <= 5:
            return 2
        if row == 9 and col in (1, 2):
            return 4
        if row == 9 and col == 9:
            return 6
        return 102

    store.write("grid_lcz", aggregate_lcz_levels(lcz_grid(10, 10, lcz)))


def test_sprawl_areas_without_distance(store):
    urban_grid(store)
    areas = store.read(sprawl_areas(store, "grid_lcz", distance=0))
    assert areas['id'].tolist() == [1, 2]
    assert sorted(areas.geometry.area) == pytest.approx([20000, 250000])


def test_sprawl_areas_remove_small_areas(store):
    urban_grid(store)
    areas = store.read(sprawl_areas(store, "grid_lcz", distance=100, prefix_name="city"))
    assert store.has_table("city_sprawl_areas")
    assert len(areas) == 1
    assert areas.geometry.iloc[0].area == pytest.approx(250000)


def test_sprawl_areas_preconditions(store):
    urban_grid(store)
    with pytest.raises(PreconditionError):
        sprawl_areas(store, "grid_lcz", distance=-1)
    store.write("no_warm", lcz_grid(3, 3, lambda row, col: 1))
    with pytest.raises(PreconditionError, match="LCZ_WARM"):
        sprawl_areas(store, "no_warm")


def test_cool_areas(store):
    urban_grid(store)
    areas = store.read(cool_areas(store, "grid_lcz", distance=0))
    assert len(areas) == 1
    assert areas.geometry.iloc[0].area == pytest.approx(1000000 - 250000 - 20000 - 10000)
    assert len(store.read(cool_areas(store, "grid_lcz", distance=1000))) == 0


def test_inverse_polygons_layer(store):
    store.write("polygons", frame([box(0, 0, 10, 10), box(20, 20, 30, 30)], id=[1, 2]))
    inverse = store.read(inverse_polygons_layer(store, "polygons"))
    assert inverse['id'].tolist() == [1]
    assert inverse.geometry.iloc[0].area == pytest.approx(700)
    assert not shapely.intersects(inverse.geometry.iloc[0], box(1, 1, 9, 9))
