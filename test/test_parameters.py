import json
from geoclimate.parameters import DEFAULT_PARAMETERS, load_parameters


def test_defaults_without_file():
    parameters = load_parameters()
    assert parameters == DEFAULT_PARAMETERS
    parameters["nb_levels"] = 5
    assert DEFAULT_PARAMETERS["nb_levels"] == 1


def test_missing_file_falls_back_to_the_defaults(tmp_path, capsys):
    parameters = load_parameters(str(tmp_path / "missing.json"))
    assert parameters == DEFAULT_PARAMETERS
    assert "does not exist" in capsys.readouterr().err


def test_file_overrides_the_defaults(tmp_path):
    file = tmp_path / "parameters.json"
    file.write_text(json.dumps({"nb_levels": 3, "surface_hydro": 5000, "lcz_weights": {"1": 20, "105": 11}}))
    parameters = load_parameters(str(file))
    assert parameters["nb_levels"] == 3
    assert parameters["surface_hydro"] == 5000
    assert parameters["surface_vegetation"] == DEFAULT_PARAMETERS["surface_vegetation"]
    assert parameters["lcz_weights"] == {1: 20, 105: 11}
