"""
Storage backends for the spatial tables handled by the geoclimate processes.

Every process reads its inputs from, and writes its outputs to, a GeometryStore
through plain table names. Two backends are provided:

- MemoryStore keeps the tables as GeoDataFrames in a dictionary.
- GeoPackageStore keeps the tables as layers of a single GeoPackage file.

Intermediate tables are reserved through scratch_tables(), which drops them
whatever the way the block is left.
"""
import os
import uuid
from contextlib import contextmanager
import fiona
import pandas as pd
import geopandas as gpd
from tqdm import tqdm
from geoclimate.utils import GEOMETRY_COLUMN

GRID_COLUMNS = [GEOMETRY_COLUMN, "id_grid", "id_col", "id_row"]
INTEGER_PREFIXES = ("lcz_", "id_")


def prefix(prefix_name, base_name):
    if prefix_name:
        return f"{prefix_name}_{base_name}"
    return base_name


def postfix(base_name, suffix=None):
    if suffix is None:
        suffix = uuid.uuid4().hex
    return f"{base_name}_{suffix}"


def restore_integer_columns(gdf, prefixes=INTEGER_PREFIXES):
    """
    Casts back to nullable integers the LCZ and identifier columns that a file
    backend returned as floats (nulls among integers) or as objects (only nulls).
    """
    for column in gdf.columns:
        if column == gdf.geometry.name or not column.lower().startswith(prefixes):
            continue
        values = gdf[column]
        if len(values) and values.isna().all():
            gdf[column] = pd.to_numeric(values).astype("Int64")
        elif pd.api.types.is_float_dtype(values) and (values.dropna() % 1 == 0).all():
            gdf[column] = values.astype("Int64")
    return gdf


class GeometryStore:
    """Common capabilities of the table backends."""

    def has_table(self, name):
        raise NotImplementedError

    def tables(self):
        raise NotImplementedError

    def read(self, name):
        raise NotImplementedError

    def write(self, name, gdf):
        raise NotImplementedError

    def append(self, name, gdf):
        raise NotImplementedError

    def drop(self, *names):
        raise NotImplementedError

    def columns(self, name):
        return list(self.read(name).columns)

    def row_count(self, name):
        return len(self.read(name))

    def srid(self, name):
        gdf = self.read(name)
        crs = getattr(gdf, "crs", None)
        return crs.to_epsg() if crs is not None else None

    def insert_rows(self, name, rows, columns, crs=None, batch_size=1000, desc=None):
        """
        Inserts an iterable of tuples in batches.

        The table is (re)created with the first batch and the next ones are appended.
        Returns the number of inserted rows.
        """
        self.drop(name)
        batch = []
        inserted = 0
        created = False
        for row in tqdm(rows, desc=desc or f"Inserting rows in {name}..."):
            batch.append(row)
            if len(batch) >= batch_size:
                self._flush(name, batch, columns, crs, created)
                created = True
                inserted += len(batch)
                batch = []
        if batch or not created:
            self._flush(name, batch, columns, crs, created)
            inserted += len(batch)
        return inserted

    def _flush(self, name, batch, columns, crs, created):
        frame = pd.DataFrame(batch, columns=columns)
        if GEOMETRY_COLUMN in columns:
            frame = gpd.GeoDataFrame(frame, geometry=GEOMETRY_COLUMN, crs=crs)
        if created:
            self.append(name, frame)
        else:
            self.write(name, frame)

    def create_grid(self, name, cells, crs=None, batch_size=1000):
        """Stores the cells of a grid given as (the_geom, id_grid, id_col, id_row) tuples."""
        return self.insert_rows(name, cells, GRID_COLUMNS, crs=crs, batch_size=batch_size,
                                desc="Inserting grid cells...")


class MemoryStore(GeometryStore):

    def __init__(self, tables=None):
        self._tables = {}
        for name, gdf in (tables or {}).items():
            self.write(name, gdf)

    def has_table(self, name):
        return name in self._tables

    def tables(self):
        return list(self._tables)

    def read(self, name):
        if name not in self._tables:
            raise KeyError(f"The table {name} does not exist")
        return self._tables[name].copy()

    def write(self, name, gdf):
        self._tables[name] = gdf.copy()

    def append(self, name, gdf):
        if name not in self._tables:
            self.write(name, gdf)
            return
        current = self._tables[name]
        appended = pd.concat([current, gdf], ignore_index=True)
        if isinstance(current, gpd.GeoDataFrame):
            appended = gpd.GeoDataFrame(appended, geometry=current.geometry.name, crs=current.crs)
        self._tables[name] = appended

    def drop(self, *names):
        for name in names:
            if name:
                self._tables.pop(name, None)

    def create_grid(self, name, cells, crs=None, batch_size=1000):
        # All the cells are built in one go, no batching needed in memory
        frame = gpd.GeoDataFrame(pd.DataFrame(list(cells), columns=GRID_COLUMNS),
                                 geometry=GEOMETRY_COLUMN, crs=crs)
        self.write(name, frame)
        return len(frame)


class GeoPackageStore(GeometryStore):

    def __init__(self, path):
        self.path = path

    def has_table(self, name):
        return name in self.tables()

    def tables(self):
        if not os.path.exists(self.path):
            return []
        return fiona.listlayers(self.path)

    def read(self, name):
        if not self.has_table(name):
            raise KeyError(f"The table {name} does not exist in {self.path}")
        gdf = gpd.read_file(self.path, layer=name, engine="fiona")
        if gdf.geometry.name != GEOMETRY_COLUMN:
            gdf = gdf.rename_geometry(GEOMETRY_COLUMN)
        return restore_integer_columns(gdf)

    def write(self, name, gdf):
        if not isinstance(gdf, gpd.GeoDataFrame):
            raise TypeError(f"Only spatial tables can be stored in {self.path}, {name} has no geometry")
        self.drop(name)
        gdf.to_file(self.path, layer=name, driver="GPKG", engine="fiona")

    def append(self, name, gdf):
        if not self.has_table(name):
            self.write(name, gdf)
            return
        gdf.to_file(self.path, layer=name, driver="GPKG", mode="a", engine="fiona")

    def drop(self, *names):
        existing = self.tables()
        for name in names:
            if name and name in existing:
                fiona.remove(self.path, driver="GPKG", layer=name)


class ScratchSpace:
    """Names of the intermediate tables of one process call."""

    def __init__(self, store):
        self.store = store
        self.names = []

    def name(self, base_name):
        name = postfix(base_name)
        self.names.append(name)
        return name

    def adopt(self, name):
        """Registers a table created under another name so that it is dropped with the others."""
        if name not in self.names:
            self.names.append(name)
        return name

    def release(self):
        self.store.drop(*self.names)
        self.names = []


@contextmanager
def scratch_tables(store):
    """Context manager yielding a ScratchSpace whose tables are dropped on exit"""
    scratch = ScratchSpace(store)
    try:
        yield scratch
    finally:
        scratch.release()
