import gzip

import numpy as np
import pytest

from conftest import GEEKS_4
from run_tsplib import get_known_optimal, main, parse_tsplib

EUC_FILE = """\
NAME : square5
COMMENT : 3-4-5 triangles
TYPE : TSP
DIMENSION : 5
EDGE_WEIGHT_TYPE : EUC_2D
NODE_COORD_SECTION
1 0 0
2 3 0
3 3 4
4 0 4
5 1.5 2
EOF
"""

ATSP_FILE = """\
NAME: ring4
TYPE: ATSP
DIMENSION: 4
EDGE_WEIGHT_TYPE: EXPLICIT
EDGE_WEIGHT_FORMAT: FULL_MATRIX
EDGE_WEIGHT_SECTION
0 1 60 60
60 0 1 60
60 60 0 1
1 60 60 0
EOF
"""

UPPER_ROW_FILE = """\
NAME: geeks4
TYPE: TSP
DIMENSION: 4
EDGE_WEIGHT_TYPE: EXPLICIT
EDGE_WEIGHT_FORMAT: UPPER_ROW
EDGE_WEIGHT_SECTION
10 15 20
35 25
30
EOF
"""

LOWER_DIAG_FILE = """\
NAME: geeks4
TYPE: TSP
DIMENSION: 4
EDGE_WEIGHT_TYPE: EXPLICIT
EDGE_WEIGHT_FORMAT: LOWER_DIAG_ROW
EDGE_WEIGHT_SECTION
0
10 0
15 35 0
20 25 30 0
EOF
"""

NO_FORMAT_FILE = """\
NAME: geeks4
DIMENSION: 4
EDGE_WEIGHT_TYPE: EXPLICIT
EDGE_WEIGHT_SECTION
10 15 20 35 25 30
EOF
"""


@pytest.fixture
def write(tmp_path):
    def _write(name, text):
        path = tmp_path / name
        if name.endswith(".gz"):
            with gzip.open(path, "wt", encoding="utf-8") as f:
                f.write(text)
        else:
            path.write_text(text, encoding="utf-8")
        return str(path)
    return _write


def test_parse_coordinates(write):
    tsp = parse_tsplib(write("square5.tsp", EUC_FILE), verbose=False)
    assert tsp["name"] == "square5"
    assert tsp["dimension"] == 5
    assert tsp["edge_weight_type"] == "EUC_2D"
    assert tsp["coords"].shape == (5, 2)
    assert tsp["D"][0, 2] == 5
    assert tsp["D"][0, 1] == 3
    # nint(2.5) = 3
    assert tsp["D"][0, 4] == 3
    assert np.array_equal(tsp["D"], tsp["D"].T)


def test_parse_full_matrix_keeps_asymmetry(write):
    tsp = parse_tsplib(write("ring4.atsp", ATSP_FILE), verbose=False)
    assert tsp["coords"] is None
    assert tsp["D"][0, 1] == 1 and tsp["D"][1, 0] == 60


@pytest.mark.parametrize("text", [UPPER_ROW_FILE, LOWER_DIAG_FILE, NO_FORMAT_FILE],
                         ids=["upper-row", "lower-diag-row", "guessed"])
def test_parse_triangular_formats(text, write):
    tsp = parse_tsplib(write("geeks4.tsp", text), verbose=False)
    assert tsp["D"].tolist() == GEEKS_4


def test_parse_gzip(write):
    tsp = parse_tsplib(write("ring4.atsp.gz", ATSP_FILE), verbose=False)
    assert tsp["name"] == "ring4"
    assert tsp["D"].shape == (4, 4)


def test_parse_rejects_missing_coords(write):
    text = EUC_FILE.replace("5 1.5 2\n", "")
    with pytest.raises(ValueError, match="Expected 5 coords"):
        parse_tsplib(write("bad.tsp", text), verbose=False)


def test_parse_rejects_unknown_metric(write):
    text = EUC_FILE.replace("EUC_2D", "XRAY1")
    with pytest.raises(ValueError, match="XRAY1"):
        parse_tsplib(write("bad.tsp", text), verbose=False)


def test_parse_rejects_unguessable_weights(write):
    text = NO_FORMAT_FILE.replace("10 15 20 35 25 30", "1 2 3 4")
    with pytest.raises(ValueError, match="got 4 values"):
        parse_tsplib(write("bad.tsp", text), verbose=False)


def test_known_optimal_lookup():
    assert get_known_optimal("gr17") == 2085
    assert get_known_optimal("GR17") == 2085
    assert get_known_optimal("berlin52") is None


# =================================================================
#  CLI
# =================================================================
def test_main_cycle(write, capsys):
    main([write("geeks4.tsp", UPPER_ROW_FILE)])
    out = capsys.readouterr().out
    assert "Cost:    80.00" in out
    assert "Route:   0→1→3→2→0" in out
    assert "Engine:  reference" in out


def test_main_path_flat_engine(write, capsys):
    main([write("ring4.atsp", ATSP_FILE), "--path", "--engine", "flat", "--device", "cpu"])
    out = capsys.readouterr().out
    assert "ring4 (path, engine=flat)" in out
    assert "Cost:    3.00" in out
    assert "Engine:  flat" in out


def test_main_missing_file(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc:
        main([str(tmp_path / "nope.tsp")])
    assert exc.value.code == 1
    assert "파일 없음" in capsys.readouterr().out


def test_main_rejects_large_instance(write, capsys):
    with pytest.raises(SystemExit) as exc:
        main([write("square5.tsp", EUC_FILE), "--max-cities", "4"])
    assert exc.value.code == 1
    assert "n=5 > max-cities=4" in capsys.readouterr().out


def test_main_plot(write, tmp_path, capsys):
    out_png = tmp_path / "tour.png"
    main([write("square5.tsp", EUC_FILE), "--plot", str(out_png)])
    assert out_png.exists() and out_png.stat().st_size > 0
    assert "Plot saved" in capsys.readouterr().out


def test_main_plot_without_coords(write, tmp_path, capsys):
    out_png = tmp_path / "tour.png"
    main([write("ring4.atsp", ATSP_FILE), "--plot", str(out_png)])
    assert not out_png.exists()
    assert "plot 생략" in capsys.readouterr().out
