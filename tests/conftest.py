import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")


# geeksforgeeks 4-city 예제 (대칭)
GEEKS_4 = [
    [0, 10, 15, 20],
    [10, 0, 35, 25],
    [15, 35, 0, 30],
    [20, 25, 30, 0],
]

# stackoverflow 27195735 (n = 11)
CITIES_11 = [
    [0, 29, 20, 21, 16, 31, 100, 12, 4, 31, 18],
    [29, 0, 15, 29, 28, 40, 72, 21, 29, 41, 12],
    [20, 15, 0, 15, 14, 25, 81, 9, 23, 27, 13],
    [21, 29, 15, 0, 4, 12, 92, 12, 25, 13, 25],
    [16, 28, 14, 4, 0, 16, 94, 9, 20, 16, 22],
    [31, 40, 25, 12, 16, 0, 95, 24, 36, 3, 37],
    [100, 72, 81, 92, 94, 95, 0, 90, 101, 99, 84],
    [12, 21, 9, 12, 9, 24, 90, 0, 15, 25, 13],
    [4, 29, 23, 25, 20, 36, 101, 15, 0, 35, 18],
    [31, 41, 27, 13, 16, 3, 99, 25, 35, 0, 38],
    [18, 12, 13, 25, 22, 37, 84, 13, 18, 38, 0],
]


@pytest.fixture(params=["reference", "flat"])
def engine_options(request):
    """두 엔진 모두로 실행. flat은 CPU 고정."""
    if request.param == "flat":
        return {"engine": "flat", "device": "cpu"}
    return {"engine": "reference"}


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
