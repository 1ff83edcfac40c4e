import copy
import json
import os
import sys
from geoclimate.grid_indicators import DEFAULT_LCZ_WEIGHTS

DEFAULT_PARAMETERS = {
    "surface_vegetation": 10000,
    "surface_hydro": 2500,
    "surface_urban_areas": 10000,
    "rsu_area": 1.0,
    "snapping_tolerance": 0.01,
    "block_snapping_tolerance": 0.0,
    "grid_size_x": 100,
    "grid_size_y": 100,
    "row_col": False,
    "nb_levels": 1,
    "lcz_weights": DEFAULT_LCZ_WEIGHTS,
    "sprawl_distance": 100,
    "cool_distance": 100,
}


def load_parameters(file=None):
    """
    Parameters of the processes, read from a JSON file over the default ones.

    Keys of the file unknown to DEFAULT_PARAMETERS are kept as they are. When the file
    does not exist, a warning is written and the defaults are returned.
    """
    parameters = copy.deepcopy(DEFAULT_PARAMETERS)
    if file is None:
        return parameters
    if not os.path.exists(file):
        sys.stderr.write(f"The parameters file {file} does not exist, using the default parameters\n")
        return parameters

    with open(file, "r", encoding="utf-8") as f:
        parameters.update(json.load(f))
    # JSON keys are always strings
    parameters["lcz_weights"] = {int(lcz): int(weight) for lcz, weight in parameters["lcz_weights"].items()}
    return parameters
