import sys
import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from geopandas import sjoin
from geoclimate.utils import (PreconditionError, GEOMETRY_COLUMN, empty_frame, to_frame, make_valid, with_crs,
                              find_column, column_values, lowered, lines_frame)
from geoclimate.store import prefix, postfix, scratch_tables
from geoclimate.mergers import label_clusters, union_cluster, merge_touching

MINOR_ROAD_TYPES = ['track', 'service', 'path', 'cycleway', 'steps']
ROAD_CROSSINGS = ['bridge', 'crossing']
VEGETATION_HEIGHT_CLASSES = ['low', 'high']
MIN_SURFACE_THRESHOLD = 100


def read_layer(store, table_name):
    """Frame of an optional input layer, None when the layer is not given, absent or empty"""
    if not table_name or not store.has_table(table_name):
        return None
    gdf = store.read(table_name)
    if gdf.empty or len(gdf.columns) == 0:
        return None
    return gdf


def road_lines(road, crs, table=None):
    zindex = pd.to_numeric(road[find_column(road, "zindex", table=table)], errors="coerce")
    road_type = lowered(road[find_column(road, "type", table=table)])
    crossing = lowered(column_values(road, "crossing", table=table))
    keep = (((zindex == 0) | crossing.isin(ROAD_CROSSINGS)) &
            road_type.notna() & ~road_type.isin(MINOR_ROAD_TYPES))
    return lines_frame(road[keep.to_numpy(dtype=bool)], crs=crs)


def rail_lines(rail, crs, table=None):
    zindex = pd.to_numeric(rail[find_column(rail, "zindex", table=table)], errors="coerce")
    usage = lowered(rail[find_column(rail, "usage", table=table)])
    crossing = lowered(column_values(rail, "crossing", table=table))
    main = usage == "main"
    keep = ((zindex == 0) & main) | ((crossing == "bridge") & main)
    return lines_frame(rail[keep.fillna(False).to_numpy(dtype=bool)], crs=crs)


def vegetation_lines(vegetation, crs, surface_vegetation, table=None):
    """
    Vegetation boundaries to cut the zone with.

    Touching fragments are grouped by connected component, then each component is
    unioned separately for the low and the high vegetation. A union is kept when the sum
    of the areas of its fragments reaches surface_vegetation. Isolated fragments are kept
    when their own area reaches it.
    """
    id_veget = find_column(vegetation, "id_veget", table=table)
    height_class = find_column(vegetation, "height_class", table=table)

    clustered = label_clusters(make_valid(vegetation), id_veget)
    clustered['area'] = clustered.geometry.area
    clustered['height'] = lowered(clustered[height_class])

    geometries = []
    grouped = clustered[(clustered['cluster_size'] > 1) & clustered['height'].isin(VEGETATION_HEIGHT_CLASSES)]
    for (cluster_id, height), members in grouped.groupby(['cluster_id', 'height'], sort=True):
        if members['area'].sum() >= surface_vegetation:
            geometries.append(union_cluster(members.geometry.values))

    isolated = clustered[(clustered['cluster_size'] == 1) & (clustered['area'] >= surface_vegetation)]
    geometries.extend(isolated.geometry)

    return lines_frame(to_frame(geometries, crs=crs), crs=crs)


def water_lines(water, crs, surface_hydro, table=None):
    """
    Water boundaries to cut the zone with.

    Only the fragments at ground level (zindex = 0) can start an adjacency, every
    fragment of a component is unioned and the union is kept when the sum of the areas
    reaches surface_hydro.
    """
    id_water = find_column(water, "id_water", table=table)
    zindex = pd.to_numeric(water[find_column(water, "zindex", table=table)], errors="coerce")
    merged = merge_touching(make_valid(water), id_water, area_gate=surface_hydro,
                            start_mask=(zindex == 0).to_numpy(dtype=bool))
    return lines_frame(merged, crs=crs)


def land_lines(sea_land_mask, crs, table=None):
    mask_type = lowered(sea_land_mask[find_column(sea_land_mask, "type", table=table)])
    return lines_frame(sea_land_mask[(mask_type == "land").fillna(False).to_numpy(dtype=bool)], crs=crs)


def urban_area_lines(urban_areas, crs, surface_urban_areas, table=None):
    urban_type = lowered(urban_areas[find_column(urban_areas, "type", table=table)])
    keep = (urban_areas.geometry.area >= surface_urban_areas) & urban_type.notna() & (urban_type != "social_building")
    return lines_frame(urban_areas[keep.fillna(False).to_numpy(dtype=bool)], crs=crs)


def prepare_tsu_data(store, zone, road=None, rail=None, vegetation=None, water=None, sea_land_mask=None,
                     urban_areas=None, surface_vegetation=10000, surface_hydro=2500, surface_urban_areas=10000,
                     prefix_name="unified_abstract_model"):
    """
    Prepares the lines used to cut the zone in Topographical Spatial Units (TSU).

    Parameters:
    - store (GeometryStore): store holding the layers.
    - zone (str): zone table, it must contain exactly one row.
    - road, rail, vegetation, water, sea_land_mask, urban_areas (str): optional layers.
    - surface_vegetation (float): minimum area of the vegetation areas, 10000 m² seems correct.
    - surface_hydro (float): minimum area of the water areas, 2500 m² seems correct.
    - surface_urban_areas (float): minimum area of the urban areas.
    - prefix_name (str): prefix of the output table.

    Returns:
    - The name of a table of multilines: the boundary of the zone plus the selected
      boundaries of each layer.
    """
    for name, surface in (("surface_vegetation", surface_vegetation), ("surface_hydro", surface_hydro),
                          ("surface_urban_areas", surface_urban_areas)):
        if surface is None or surface <= MIN_SURFACE_THRESHOLD:
            raise PreconditionError(f"The parameter {name} must be greater than {MIN_SURFACE_THRESHOLD} m², "
                                    f"got {surface}")
    if not zone or not store.has_table(zone):
        raise PreconditionError(f"Cannot compute the TSU, missing zone table {zone}")
    zone_gdf = store.read(zone)
    if len(zone_gdf) != 1:
        raise PreconditionError(f"Cannot compute the TSU, multiple or missing zone: the zone table {zone} "
                                f"must have one row, it has {len(zone_gdf)}")

    sys.stderr.write("\nPreparing the abstract model to build the TSU\n")
    crs = zone_gdf.crs
    output_table = prefix(prefix_name, "prepared_tsu_data")

    layers = [
        ("land_mask_tmp", sea_land_mask, lambda gdf: land_lines(gdf, crs, table=sea_land_mask)),
        ("vegetation_tmp", vegetation,
         lambda gdf: vegetation_lines(gdf, crs, surface_vegetation, table=vegetation)),
        ("hydrographic_tmp", water, lambda gdf: water_lines(gdf, crs, surface_hydro, table=water)),
        ("road_tmp", road, lambda gdf: road_lines(gdf, crs, table=road)),
        ("rail_tmp", rail, lambda gdf: rail_lines(gdf, crs, table=rail)),
        ("urban_areas_tmp", urban_areas,
         lambda gdf: urban_area_lines(gdf, crs, surface_urban_areas, table=urban_areas)),
    ]

    with scratch_tables(store) as scratch:
        prepared_tables = []
        for base_name, table_name, prepare in layers:
            gdf = read_layer(store, table_name)
            if gdf is None:
                continue
            sys.stderr.write(f"\tPreparing {table_name}...\n")
            tmp_table = scratch.name(base_name)
            store.write(tmp_table, prepare(gdf))
            prepared_tables.append(tmp_table)

        frames = [lines_frame(zone_gdf, crs=crs)] + [store.read(t) for t in prepared_tables]
        frames = [with_crs(frame, crs) for frame in frames if not frame.empty]
        if frames:
            prepared = gpd.GeoDataFrame(pd.concat(frames, ignore_index=True), geometry=GEOMETRY_COLUMN, crs=crs)
        else:
            prepared = empty_frame([], crs=crs)

        store.drop(output_table)
        store.write(output_table, prepared)

    sys.stderr.write(f"\t{len(prepared)} lines prepared to build the TSU\n")
    return output_table


def polygonize_lines(lines, zone=None, area=1.0, snapping_tolerance=0.01):
    """
    Cuts the plane with a set of lines.

    The lines are noded and unioned, then polygonized. Each face gets a sequential
    id_rsu in the order the faces are produced. When a zone is given, only the faces whose
    point on surface lies in the zone are kept. Faces with an area lower or equal to
    `area` are removed, they are not merged with their neighbours.

    Parameters:
    - lines (GeoDataFrame): lines and multilines.
    - zone (GeoDataFrame): optional polygon to keep the faces in.
    - area (float): minimum area of the faces.
    - snapping_tolerance (float): the faces are buffered by this distance, outwards when a
      zone is given, inwards otherwise. 0 leaves them untouched.

    Returns:
    - GeoDataFrame (id_rsu, the_geom)
    """
    crs = lines.crs
    geometries = [g for g in lines.geometry if g is not None and not g.is_empty]
    if not geometries:
        return empty_frame(['id_rsu'], crs=crs)

    noded = shapely.union_all(np.asarray(geometries, dtype=object))
    faces = shapely.get_parts(shapely.polygonize(shapely.get_parts(noded)))
    if len(faces) == 0:
        return empty_frame(['id_rsu'], crs=crs)

    tsu = to_frame(faces, crs=crs, id_rsu=np.arange(1, len(faces) + 1))

    if zone is not None:
        points = gpd.GeoDataFrame({'id_rsu': tsu['id_rsu']}, geometry=tsu.geometry.representative_point(),
                                  crs=crs)
        zone_geometries = with_crs(zone[[zone.geometry.name]], crs)
        inside = sjoin(points, zone_geometries, how='inner', predicate='intersects')
        tsu = tsu[tsu['id_rsu'].isin(inside['id_rsu'])]

    tsu = tsu[tsu.geometry.area > area].copy()

    if snapping_tolerance > 0:
        distance = snapping_tolerance if zone is not None else -snapping_tolerance
        tsu[GEOMETRY_COLUMN] = tsu.geometry.buffer(distance)

    return tsu.reset_index(drop=True)


def create_tsu(store, input_table, zone=None, area=1.0, prefix_name="", snapping_tolerance=0.01):
    """
    Creates the Topographical Spatial Units (TSU) from a table of lines.

    Parameters:
    - store (GeometryStore): store holding the tables.
    - input_table (str): table of lines, usually built by prepare_tsu_data.
    - zone (str): optional zone table to keep the TSU in. All TSU are kept otherwise.
    - area (float): TSU with an area lower or equal to this value are removed.
    - prefix_name (str): prefix of the output table.
    - snapping_tolerance (float): buffer distance applied to the faces.

    Returns:
    - The name of the TSU table (id_rsu, the_geom).
    """
    if not input_table or not store.has_table(input_table):
        raise PreconditionError("The input data to compute the TSU cannot be null or empty")
    if area <= 0:
        raise PreconditionError(f"The area value to filter the TSU must be greater than 0, got {area}")
    if zone and not store.has_table(zone):
        raise PreconditionError(f"The zone table {zone} does not exist")

    sys.stderr.write("\nCreating the topographical spatial units\n")
    lines = store.read(input_table)
    zone_gdf = store.read(zone) if zone else None

    tsu = polygonize_lines(lines, zone=zone_gdf, area=area, snapping_tolerance=snapping_tolerance)

    output_table = prefix(prefix_name, "tsu")
    store.drop(output_table)
    store.write(output_table, tsu)
    sys.stderr.write(f"\t{len(tsu)} TSU created\n")
    return output_table


def create_rsu(store, zone, road=None, rail=None, vegetation=None, water=None, sea_land_mask=None,
               urban_areas=None, area=1.0, surface_vegetation=10000, surface_hydro=2500,
               surface_urban_areas=10000, prefix_name="", snapping_tolerance=0.01):
    """
    Creates the reference spatial units (RSU) of a zone from its layers.

    See prepare_tsu_data and create_tsu for the parameters.

    Returns:
    - The name of the RSU table (id_rsu, the_geom).
    """
    if area <= 0:
        raise PreconditionError(f"The area value to filter the RSU must be greater than 0, got {area}")

    output_table = prefix(prefix_name, "rsu")
    store.drop(output_table)

    with scratch_tables(store) as scratch:
        prepared = prepare_tsu_data(store, zone, road=road, rail=rail, vegetation=vegetation, water=water,
                                    sea_land_mask=sea_land_mask, urban_areas=urban_areas,
                                    surface_vegetation=surface_vegetation, surface_hydro=surface_hydro,
                                    surface_urban_areas=surface_urban_areas,
                                    prefix_name=postfix("unified_abstract_model"))
        scratch.adopt(prepared)
        tsu = create_tsu(store, prepared, zone=zone, area=area, prefix_name=postfix(prefix_name or "rsu"),
                         snapping_tolerance=snapping_tolerance)
        scratch.adopt(tsu)
        store.write(output_table, store.read(tsu))

    sys.stderr.write(f"\nReference spatial units table {output_table} created\n")
    return output_table


def spatial_join(store, source_table, target_table, id_column_target, point_on_surface=False, nb_relations=None,
                 prefix_name=""):
    """
    Spatially links the polygons of two tables, e.g. buildings and blocks, buildings and
    RSU, or buildings from two datasets.

    Parameters:
    - store (GeometryStore): store holding the tables.
    - source_table (str): first table, all of its columns are kept.
    - target_table (str): second table.
    - id_column_target (str): identifier of the target table.
    - point_on_surface (bool): join the point on surface of the source polygons instead of
      the polygons themselves.
    - nb_relations (int): when point_on_surface is False, number of targets kept for each
      source polygon, chosen by shared area. Every relation is kept when None, with the
      shared area in an `area` column.
    - prefix_name (str): prefix of the output table.

    Returns:
    - The name of the joined table.
    """
    for table_name in (source_table, target_table):
        if not table_name or not store.has_table(table_name):
            raise PreconditionError(f"The table {table_name} does not exist")
    if nb_relations is not None and nb_relations < 1:
        raise PreconditionError(f"The number of relations must be at least 1, got {nb_relations}")

    sys.stderr.write(f"\nCreating a spatial join between {source_table} and {target_table}\n")
    source = store.read(source_table).reset_index(drop=True)
    target = store.read(target_table).reset_index(drop=True)
    id_target = find_column(target, id_column_target, table=target_table)
    targets = target[[id_target, target.geometry.name]]
    # The identifiers of the source are replaced by the ones of the join
    clash = find_column(source, id_target, required=False)
    if clash is not None:
        sys.stderr.write(f"\tThe column {clash} of {source_table} is replaced by {id_target} of {target_table}\n")
        source = source.drop(columns=clash)

    if point_on_surface:
        points = gpd.GeoDataFrame(geometry=source.geometry.representative_point(), crs=source.crs)
        joined = sjoin(points, targets, how='inner', predicate='intersects')
        result = source.loc[joined.index].copy()
        result[id_target] = joined[id_target].to_numpy()
    else:
        pairs = sjoin(source[[source.geometry.name]], targets, how='inner', predicate='intersects')
        shared = shapely.intersection(source.geometry.loc[pairs.index].to_numpy(),
                                      target.geometry.loc[pairs["index_right"]].to_numpy())
        pairs = pd.DataFrame({'source_index': pairs.index, id_target: pairs[id_target].to_numpy(),
                              'area': shapely.area(shared)})
        if nb_relations is None:
            result = source.loc[pairs['source_index']].copy()
            result[id_target] = pairs[id_target].to_numpy()
            result['area'] = pairs['area'].to_numpy()
        else:
            pairs = pairs.sort_values(['source_index', 'area'], ascending=[True, False])
            pairs = pairs.groupby('source_index').head(nb_relations)
            result = source.merge(pairs[['source_index', id_target]], left_index=True, right_on='source_index',
                                  how='left').drop(columns='source_index')
            result = gpd.GeoDataFrame(result, geometry=source.geometry.name, crs=source.crs)

    output_table = prefix(prefix_name, f"{source_table}_{target_table}_join")
    store.drop(output_table)
    store.write(output_table, result.reset_index(drop=True))
    return output_table
