#!/usr/bin/env python3
"""
Reference Spatial Units and Blocks Example

This script builds the reference spatial units (RSU) and the blocks of a zone whose
layers are stored in a GeoPackage file. The zone layer must contain exactly one polygon
and every layer must use the same projected CRS.

Key features demonstrated:
- Layers read and written through a GeoPackageStore
- Surface thresholds loaded from a JSON parameters file
- RSU built from roads, railways, vegetation, water and urban areas
- Blocks built from the buildings with a small snapping tolerance
- Buildings linked to their RSU and block

Author: geoclimate examples
"""

import geoclimate as gc

# Configuration
# GeoPackage holding the layers: zone, road, rail, vegetation, water, urban_areas, building
gpkg = "/home/data/geoclimate/redon.gpkg"
parameters = gc.load_parameters("/home/data/geoclimate/parameters.json")
prefix_name = "redon"

store = gc.GeoPackageStore(gpkg)
print(f"Layers found in {gpkg}: {', '.join(store.tables())}")

# Reference spatial units
print("Building the reference spatial units...")
rsu = gc.create_rsu(
    store,
    zone="zone",
    road="road",
    rail="rail",
    vegetation="vegetation",
    water="water",
    urban_areas="urban_areas",
    area=parameters["rsu_area"],
    surface_vegetation=parameters["surface_vegetation"],
    surface_hydro=parameters["surface_hydro"],
    surface_urban_areas=parameters["surface_urban_areas"],
    prefix_name=prefix_name,
    snapping_tolerance=parameters["snapping_tolerance"]
)

# Blocks
print("Building the blocks...")
blocks = gc.create_blocks(store, "building", snapping_tolerance=parameters["block_snapping_tolerance"],
                          prefix_name=prefix_name)

# Link every building to the RSU and the block holding its point on surface
building_rsu = gc.spatial_join(store, "building", rsu, "id_rsu", point_on_surface=True, prefix_name=prefix_name)
building_block = gc.spatial_join(store, "building", blocks, "id_block", point_on_surface=True,
                                 prefix_name=prefix_name)

# Summary
print("\n" + "="*60)
print("SPATIAL UNITS COMPLETED")
print("="*60)
print(f"RSU: {store.row_count(rsu):,} in {rsu}")
print(f"Blocks: {store.row_count(blocks):,} in {blocks}")
print(f"Buildings linked to a RSU: {store.row_count(building_rsu):,}")
print(f"Buildings linked to a block: {store.row_count(building_block):,}")
