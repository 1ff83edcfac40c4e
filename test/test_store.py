import pytest
import pandas as pd
from shapely.geometry import box
from geoclimate.store import GeoPackageStore, scratch_tables, prefix, postfix
from geoclimate.grid_indicators import aggregate_lcz_levels
from conftest import CRS, frame


def test_prefix_and_postfix():
    assert prefix("city", "tsu") == "city_tsu"
    assert prefix("", "tsu") == "tsu"
    assert postfix("tmp", "1") == "tmp_1"
    assert postfix("tmp") != postfix("tmp")


def test_memory_store_copies_the_tables(store):
    gdf = frame([box(0, 0, 1, 1)], id=[1])
    store.write("cells", gdf)
    gdf.loc[0, 'id'] = 2
    assert store.read("cells")['id'].tolist() == [1]
    assert store.row_count("cells") == 1
    assert store.srid("cells") == 2154


def test_memory_store_drop_ignores_missing_tables(store):
    store.write("cells", frame([box(0, 0, 1, 1)], id=[1]))
    store.drop("cells", "missing", None)
    assert store.tables() == []


def test_insert_rows_in_batches(store):
    rows = [(box(i, 0, i + 1, 1), i) for i in range(25)]
    inserted = store.insert_rows("cells", rows, ["the_geom", "id"], crs=CRS, batch_size=10)
    assert inserted == 25
    assert store.read("cells")['id'].tolist() == list(range(25))
    assert store.read("cells").crs == CRS


def test_insert_no_rows_creates_an_empty_table(store):
    assert store.insert_rows("cells", [], ["the_geom", "id"], crs=CRS) == 0
    assert store.has_table("cells")
    assert store.row_count("cells") == 0


def test_scratch_tables_are_dropped_on_success(store):
    with scratch_tables(store) as scratch:
        name = scratch.name("tmp")
        store.write(name, frame([box(0, 0, 1, 1)], id=[1]))
        assert store.has_table(name)
    assert not store.has_table(name)


def test_scratch_tables_are_dropped_on_error(store):
    names = []
    with pytest.raises(RuntimeError):
        with scratch_tables(store) as scratch:
            names.append(scratch.name("tmp"))
            store.write(names[0], frame([box(0, 0, 1, 1)], id=[1]))
            store.write("adopted", frame([box(0, 0, 1, 1)], id=[1]))
            scratch.adopt("adopted")
            raise RuntimeError("failure")
    assert store.tables() == []


def test_geopackage_store(tmp_path):
    store = GeoPackageStore(str(tmp_path / "zone.gpkg"))
    assert store.tables() == []

    store.write("cells", frame([box(0, 0, 1, 1), box(1, 0, 2, 1)], id=[1, 2]))
    store.append("cells", frame([box(2, 0, 3, 1)], id=[3]))
    cells = store.read("cells")
    assert cells.geometry.name == "the_geom"
    assert sorted(cells['id']) == [1, 2, 3]
    assert store.srid("cells") == 2154

    store.create_grid("grid", [(box(0, 0, 1, 1), 1, 1, 1), (box(1, 0, 2, 1), 2, 2, 1)], crs=CRS, batch_size=1)
    assert store.row_count("grid") == 2

    store.drop("cells")
    assert store.tables() == ["grid"]


def test_geopackage_store_rejects_tables_without_geometry(tmp_path):
    store = GeoPackageStore(str(tmp_path / "zone.gpkg"))
    with pytest.raises(TypeError):
        store.write("values", pd.DataFrame({'id': [1]}))


def test_geopackage_store_keeps_lcz_columns_as_integers(tmp_path):
    store = GeoPackageStore(str(tmp_path / "zone.gpkg"))
    lcz = pd.array([2, 2, None, 2, 2, 2, 101, 2, 2], dtype="Int64")
    geometries = [box(col * 100, row * 100, (col + 1) * 100, (row + 1) * 100) for row in range(3) for col in range(3)]
    grid = frame(geometries, id_grid=list(range(1, 10)), id_row=[1, 1, 1, 2, 2, 2, 3, 3, 3],
                 id_col=[1, 2, 3] * 3, lcz_primary=lcz)
    store.write("grid_lcz", aggregate_lcz_levels(grid))

    cells = store.read("grid_lcz")
    assert cells['lcz_primary'].dtype == "Int64"
    assert cells['lcz_primary'].isna().sum() == 1
    assert cells['LCZ_PRIMARY_LOD_1'].dtype == "Int64"
    assert cells['LCZ_PRIMARY_LOD_1'].tolist() == [2] * 9
    # A single coarse cell has no adjacent coarse cells
    assert cells['LCZ_PRIMARY_N_LOD_1'].dtype == "Int64"
    assert cells['LCZ_PRIMARY_N_LOD_1'].isna().all()
    assert pd.api.types.is_integer_dtype(cells['id_grid'])
