#!/usr/bin/env python3
"""
Multiscale LCZ Grid Example

This script aggregates a grid of Local Climate Zones over coarser grids. The input
GeoPackage must contain a zone layer and a layer of LCZ polygons with an LCZ_PRIMARY
column. A 100 m grid is created over the zone, every cell takes the LCZ covering its
center, then the LCZ are aggregated over 3x3 and 9x9 cells.

Key features demonstrated:
- Grid creation over the envelope of the zone
- Multiscale LCZ aggregation with the adjacent cells at each level
- Sprawl areas and cool areas derived from the aggregated grid
- Distance from each cell to the edge of the sprawl areas

Author: geoclimate examples
"""

import geoclimate as gc

# Configuration
gpkg = "/home/data/geoclimate/redon.gpkg"
parameters = gc.load_parameters()
prefix_name = "redon"

store = gc.GeoPackageStore(gpkg)
zone = store.read("zone")

# Regular grid over the zone
print(f"Creating a {parameters['grid_size_x']} m grid over the zone...")
grid = gc.create_grid(store, zone, parameters["grid_size_x"], parameters["grid_size_y"],
                      row_col=parameters["row_col"], prefix_name=prefix_name)

# LCZ of each cell, taken from the LCZ polygon holding its center
grid_lcz = gc.spatial_join(store, grid, "lcz", "lcz_primary", point_on_surface=True, prefix_name=prefix_name)

# Aggregation over the levels
print(f"Aggregating the LCZ over {parameters['nb_levels']} levels...")
lcz_levels = gc.multiscale_lcz_grid(store, grid_lcz, id_grid="id_grid", nb_levels=parameters["nb_levels"],
                                    lcz_weights=parameters["lcz_weights"], prefix_name=prefix_name)

# Continuous urban and cool areas
sprawl = gc.sprawl_areas(store, lcz_levels, distance=parameters["sprawl_distance"], prefix_name=prefix_name)
cool = gc.cool_areas(store, lcz_levels, distance=parameters["cool_distance"], prefix_name=prefix_name)
distances = gc.grid_distances(store, sprawl, grid, "id_grid", prefix_name=prefix_name)

# Summary
print("\n" + "="*60)
print("MULTISCALE LCZ GRID COMPLETED")
print("="*60)
print(f"Grid cells: {store.row_count(grid):,}")
print(f"Sprawl areas: {store.row_count(sprawl):,}")
print(f"Cool areas: {store.row_count(cool):,}")
print(f"Cells inside a sprawl area: {store.row_count(distances):,}")
