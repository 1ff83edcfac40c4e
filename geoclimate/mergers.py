import sys
import networkx as nx
import numpy as np
import shapely
from geopandas import sjoin
from geoclimate.utils import PreconditionError, empty_frame, find_column, to_frame
from geoclimate.store import prefix


def create_graph(gdf, id_column, snapping_tolerance=0.0, start_mask=None):
    """
    Adjacency graph of the geometries of a frame.

    Every identifier is a node. An edge links two different geometries whose bounding
    boxes intersect and that intersect each other, or lie within snapping_tolerance of
    each other when the tolerance is positive.

    Parameters:
    - gdf (GeoDataFrame): geometries to link.
    - id_column (str): column holding the unique identifier of each geometry.
    - snapping_tolerance (float): distance under which two geometries are adjacent.
    - start_mask (array of bool): rows allowed to start an edge. All rows by default.

    Returns:
    - networkx.Graph
    """
    G = nx.Graph()
    G.add_nodes_from(gdf[id_column])

    # Keep only the identifier and the geometry, named so that sjoin suffixes them
    gdf = gdf[[id_column, gdf.geometry.name]].rename(columns={id_column: "id"})
    start = gdf if start_mask is None else gdf[np.asarray(start_mask, dtype=bool)]
    if start.empty or gdf.empty:
        return G

    if snapping_tolerance > 0:
        joined = sjoin(start, gdf, how='inner', predicate='dwithin', distance=snapping_tolerance,
                       lsuffix='left', rsuffix='right')
    else:
        joined = sjoin(start, gdf, how='inner', predicate='intersects', lsuffix='left', rsuffix='right')
    joined = joined[joined['id_left'] != joined['id_right']]

    G.add_edges_from(zip(joined['id_left'], joined['id_right']))

    return G


def connected_component_labels(G):
    clusters = list(nx.connected_components(G))
    return {node: i for i, cluster in enumerate(clusters) for node in cluster}


def label_clusters(gdf, id_column, snapping_tolerance=0.0, start_mask=None):
    """
    Adds to a copy of the frame the connected component of each geometry (cluster_id)
    and the number of geometries of that component (cluster_size).
    """
    if gdf[id_column].duplicated().any():
        raise PreconditionError(f"The identifiers of the column {id_column} must be unique")
    G = create_graph(gdf, id_column, snapping_tolerance=snapping_tolerance, start_mask=start_mask)
    cluster_map = connected_component_labels(G)
    gdf = gdf.copy()
    gdf['cluster_id'] = gdf[id_column].map(cluster_map)
    gdf['cluster_size'] = gdf.groupby('cluster_id')[id_column].transform('size')
    return gdf


def union_cluster(geometries, snapping_tolerance=0.0):
    """Union of the members of a cluster, each one buffered by the tolerance when positive"""
    geometries = np.asarray(geometries, dtype=object)
    if snapping_tolerance > 0:
        geometries = shapely.buffer(geometries, snapping_tolerance)
    else:
        geometries = shapely.make_valid(geometries)
    return shapely.make_valid(shapely.union_all(geometries))


def merge_touching(gdf, id_column, snapping_tolerance=0.0, area_gate=None, start_mask=None):
    """
    Merges the geometries connected by a path of adjacent geometries.

    Parameters:
    - gdf (GeoDataFrame): geometries to merge.
    - id_column (str): unique identifier of the geometries.
    - snapping_tolerance (float): adjacency distance, 0 means touching geometries only.
    - area_gate (float): when set, a merged geometry is kept only if the sum of the areas
      of its members reaches it. Isolated geometries are gated the same way.
    - start_mask (array of bool): rows allowed to start an adjacency edge.

    Returns:
    - GeoDataFrame with one row per kept component: the_geom, n_members, area_sum.
    """
    if gdf.empty:
        return empty_frame(['n_members', 'area_sum'], crs=gdf.crs)

    clustered = label_clusters(gdf, id_column, snapping_tolerance=snapping_tolerance, start_mask=start_mask)
    clustered['area'] = clustered.geometry.area

    geometries = []
    n_members = []
    area_sums = []
    for cluster_id, members in clustered.groupby('cluster_id', sort=True):
        area_sum = members['area'].sum()
        if area_gate is not None and area_sum < area_gate:
            continue
        if len(members) > 1:
            geometry = union_cluster(members.geometry.values, snapping_tolerance=snapping_tolerance)
        else:
            geometry = shapely.make_valid(members.geometry.iloc[0])
        geometries.append(geometry)
        n_members.append(len(members))
        area_sums.append(area_sum)

    return to_frame(geometries, crs=gdf.crs, n_members=n_members, area_sum=area_sums)


def create_blocks(store, input_table, snapping_tolerance=0.0, prefix_name="block"):
    """
    Creates the blocks: groups of buildings that touch each other, or that are closer
    than snapping_tolerance.

    Parameters:
    - store (GeometryStore): store holding the building table.
    - input_table (str): building table, identified by id_build.
    - snapping_tolerance (float): distance to group the buildings.
    - prefix_name (str): prefix of the output table.

    Returns:
    - The name of the block table (id_block, the_geom).
    """
    if not input_table or not store.has_table(input_table):
        raise PreconditionError(f"The building table {input_table} does not exist")
    if snapping_tolerance < 0:
        raise PreconditionError(f"The snapping tolerance must be positive or 0, got {snapping_tolerance}")

    sys.stderr.write(f"\nCreating the blocks from {input_table}\n")
    buildings = store.read(input_table)
    id_build = find_column(buildings, "id_build", table=input_table)

    blocks = merge_touching(buildings, id_build, snapping_tolerance=snapping_tolerance)
    blocks = blocks.drop(columns=['n_members', 'area_sum'])
    blocks['the_geom'] = blocks.geometry.force_2d()
    blocks.insert(0, 'id_block', range(1, len(blocks) + 1))

    output_table = prefix(prefix_name, "blocks")
    store.drop(output_table)
    store.write(output_table, blocks)
    sys.stderr.write(f"\t{len(blocks)} blocks created from {len(buildings)} buildings\n")
    return output_table
