"""
TSP Held-Karp Exact Solver
==========================
Held-Karp DP로 최소 Hamiltonian cycle / path를 exact하게 계산.
비대칭(directed) 거리 행렬, +inf(연결 없음) 허용.

핵심:
  1) depot = 내부 인덱스 n-1 고정. S는 depot 제외 n-1개 도시의 bitmask.
  2) cost[S][v], prev[S][v]는 (n-1)·S + v 로 인덱싱되는 flat 버퍼.
  3) S를 1 → 2^(n-1)-1 숫자 순서로 채움 (S ^ (1<<v) < S 이므로 위상 순서 보장).
  4) Path = universal vertex(거리 0) 추가 후 cycle을 풀고 끊어서 얻음.

엔진:
  - "reference": 순수 Python 루프. 검증용.
  - "flat": 단일 공유 메모리 영역 + torch 배치 연산 (tsp_held_karp_flat).
  두 엔진은 같은 tie-break를 쓰므로 결과가 bit 단위로 동일.

사용법:
  from tsp_held_karp import solve_cycle, solve_path

  solve_cycle([[0, 5], [5, 0]])            # CycleSolution(length=10.0, cycle=[0, 1, 0])
  solve_path(D, engine="flat", device="cpu")
"""

import math
import numbers
import numpy as np
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

# 2^(n-1)·(n-1) 슬롯 × 2 테이블 → n=25에서 이미 ~4.6 GB
MAX_CITIES = 25

ENGINES = ("reference", "flat")

# prev[S][v]가 depot을 가리킬 때 (S = {v})
DEPOT_SENTINEL = -1

INF = math.inf


class CycleSolution(NamedTuple):
    length: float
    cycle: List[int]


class PathSolution(NamedTuple):
    length: float
    path: List[int]


# =================================================================
#                      거리 행렬 검증
# =================================================================
def as_distance_matrix(D, max_cities: Optional[int] = MAX_CITIES) -> np.ndarray:
    """
    입력을 검증하고 float64 복사본 반환 (대각선은 0으로 덮어씀).
    잘못된 입력은 테이블 생성 전에 ValueError.
    """
    try:
        raw = np.asarray(D)
    except (TypeError, ValueError) as e:
        raise ValueError(f"distance matrix는 숫자 행렬이어야 함: {e}") from e

    # 숫자 문자열("5")도 float 변환은 되므로 캐스팅 전에 dtype 확인
    if raw.dtype.kind == "O":
        bad = [x for x in raw.flat if not isinstance(x, numbers.Real)]
        if bad:
            raise ValueError(f"distance matrix는 숫자 행렬이어야 함: {bad[0]!r}")
    elif raw.dtype.kind not in "biuf":
        raise ValueError(f"distance matrix는 숫자 행렬이어야 함 (dtype={raw.dtype})")

    try:
        D_np = np.array(raw, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ValueError(f"distance matrix는 숫자 행렬이어야 함: {e}") from e

    if D_np.ndim != 2 or D_np.shape[0] != D_np.shape[1]:
        raise ValueError(f"distance matrix must be square (got shape {D_np.shape})")
    n = D_np.shape[0]
    if n < 1:
        raise ValueError("도시가 최소 1개 필요 (n ≥ 1)")
    if max_cities is not None and n > max_cities:
        raise ValueError(
            f"n={n} 는 너무 큼 (max_cities={max_cities}). "
            f"테이블 크기 2^{n - 1}·{n - 1} 슬롯."
        )

    off_diag = ~np.eye(n, dtype=bool)
    if np.isnan(D_np[off_diag]).any():
        raise ValueError("distance matrix에 NaN 포함")
    if (D_np[off_diag] < 0).any():
        raise ValueError("distance matrix에 음수 거리 포함")

    # 대각선은 읽지 않음
    np.fill_diagonal(D_np, 0.0)
    return D_np


# =================================================================
#              Reference 엔진: SubsetCostTable (순수 Python)
# =================================================================
class SubsetCostTable:
    """
    cost[S][v] = depot에서 출발, S의 도시를 정확히 한 번씩 방문하고 v에서 끝나는 최단 거리.
    prev[S][v] = 그 경로에서 v 직전 도시 (S = {v}면 DEPOT_SENTINEL).

    둘 다 길이 (n-1)·2^(n-1)의 flat list, 인덱스 (n-1)·S + v.
    S = 0 행은 사용하지 않음.
    """

    def __init__(self, D, verbose: bool = False):
        # list 접근이 numpy scalar 접근보다 훨씬 빠름
        self.D = D.tolist() if isinstance(D, np.ndarray) else [list(row) for row in D]
        self.n = len(self.D)
        self.width = self.n - 1
        self.depot = self.n - 1
        self.full = (1 << self.width) - 1

        size = self.width << self.width
        self.cost = [INF] * size
        self.prev = [DEPOT_SENTINEL] * size

        if verbose:
            print(f"[reference] n={self.n}, subsets={self.full}, "
                  f"slots={size:,} x 2")

    def build(self):
        D, w, depot = self.D, self.width, self.depot
        cost, prev = self.cost, self.prev

        for S in range(1, self.full + 1):
            row = w * S
            for v in range(w):
                S2 = S ^ (1 << v)
                if S2 > S:
                    continue  # v ∉ S

                if S2 == 0:
                    # base case: depot → v
                    cost[row + v] = D[depot][v]
                    continue

                row2 = w * S2
                best_l = INF
                best_u = DEPOT_SENTINEL
                for u in range(w):
                    if S2 & (1 << u):
                        l = cost[row2 + u] + D[u][v]
                        # 같은 값이면 먼저 본(작은 인덱스) u 유지
                        if best_u == DEPOT_SENTINEL or l < best_l:
                            best_l = l
                            best_u = u

                cost[row + v] = best_l
                prev[row + v] = best_u

        return self

    def close_loop(self) -> int:
        """cost[All][u] + d[u][depot] 최소인 마지막 도시 u."""
        D, w, depot = self.D, self.width, self.depot
        row = w * self.full

        best_l = INF
        best_u = DEPOT_SENTINEL
        for u in range(w):
            l = self.cost[row + u] + D[u][depot]
            if u == 0 or l < best_l:
                best_l = l
                best_u = u
        return best_u


def compute_cycle_reference(D: np.ndarray, verbose: bool = False) -> Tuple[int, Sequence[int]]:
    table = SubsetCostTable(D, verbose=verbose).build()
    return table.close_loop(), table.prev


# =================================================================
#                         엔진 선택
# =================================================================
def get_engine(engine: str = "reference") -> Callable[..., Tuple[int, Sequence[int]]]:
    """이름 → compute_cycle(D, **options) 함수. flat 엔진은 처음 쓸 때 import."""
    if engine == "reference":
        return compute_cycle_reference
    if engine == "flat":
        from tsp_held_karp_flat import compute_cycle_flat
        return compute_cycle_flat
    raise ValueError(f"알 수 없는 engine '{engine}' (지원: {', '.join(ENGINES)})")


# =================================================================
#                  Cycle 역추적 / 길이 / 정규화
# =================================================================
def trace_cycle(n: int, best: int, prev: Sequence[int]) -> List[int]:
    """
    prev 테이블을 따라 depot으로 끝나는 cycle 복원 (길이 n, depot 중복 없음).
    prev는 (n-1)·S + v 인덱싱의 flat 시퀀스 (list 또는 공유 메모리 view).
    """
    w = n - 1
    cycle = [w]
    S = (1 << w) - 1
    k = best
    while k != DEPOT_SENTINEL:
        cycle.insert(0, k)
        S2 = S ^ (1 << k)
        k = int(prev[w * S + k])
        S = S2
    return cycle


def cycle_length(D, cycle: List[int]) -> float:
    """닫힌 cycle 길이 (마지막 → 처음 포함). 합산 순서 고정: cycle[0]부터."""
    length = 0.0
    m = len(cycle)
    for i, u in enumerate(cycle):
        length += float(D[u][cycle[(i + 1) % m]])
    return length


def route_cost(D, route: List[int]) -> float:
    """열린 경로 길이 (wraparound 없음)."""
    c = 0.0
    for i in range(len(route) - 1):
        c += float(D[route[i]][route[i + 1]])
    return c


def rotate_to_zero(cycle: List[int]) -> List[int]:
    """도시 0에서 시작해서 0으로 끝나도록 회전 (길이 n → n+1)."""
    i = cycle.index(0)
    return cycle[i:] + cycle[:i] + [0]


# =================================================================
#                         Public Interface
# =================================================================
def _solve_cycle(D_np: np.ndarray, engine: str, engine_options: dict) -> CycleSolution:
    compute_cycle = get_engine(engine)

    n = D_np.shape[0]
    if n == 1:
        # 테이블 없이 바로 반환
        return CycleSolution(0.0, [0, 0])

    best, prev = compute_cycle(D_np, **engine_options)

    cycle = trace_cycle(n, best, prev)
    # DP 누적값 대신 엣지 합으로 다시 계산 (엔진 간 동일성)
    length = cycle_length(D_np, cycle)
    return CycleSolution(length, rotate_to_zero(cycle))


def solve_cycle(D, engine: str = "reference",
                max_cities: Optional[int] = MAX_CITIES,
                **engine_options) -> CycleSolution:
    """
    최소 비용 Hamiltonian cycle.

    Parameters
    ----------
    D : (n x n) 거리 행렬. 비대칭 가능, +inf = 연결 없음.
    engine : "reference" 또는 "flat".
    max_cities : n 상한. None이면 검사 안 함.
    engine_options : verbose, (flat) device, max_chunk_mb.

    Returns: CycleSolution(length, cycle). cycle은 0으로 시작/끝, 길이 n+1.
    length가 inf일 수 있음 (유한한 tour가 없는 경우). 호출 측에서 확인.
    """
    D_np = as_distance_matrix(D, max_cities)
    return _solve_cycle(D_np, engine, engine_options)


def solve_path(D, engine: str = "reference",
               max_cities: Optional[int] = MAX_CITIES,
               **engine_options) -> PathSolution:
    """
    최소 비용 Hamiltonian path (시작점으로 돌아가지 않음).

    새 도시 0(다른 모든 도시와 거리 0)을 추가하고, 원래 도시 i는 i+1로 이동.
    augmented cycle을 풀고 양 끝의 도시 0을 떼어낸 뒤 인덱스를 1씩 내림.

    max_cities는 호출 측 n에만 적용. 내부 테이블은 n+1 도시 크기라서
    cycle보다 약 2배 메모리 사용 (n=25면 ~10 GB).

    Returns: PathSolution(length, path). path 길이 n.
    """
    D_np = as_distance_matrix(D, max_cities)
    n = D_np.shape[0]

    D_aug = np.zeros((n + 1, n + 1), dtype=np.float64)
    D_aug[1:, 1:] = D_np

    _, cycle = _solve_cycle(D_aug, engine, engine_options)
    path = [k - 1 for k in cycle[1:-1]]

    # synthetic 엣지는 0 → path 순서대로 다시 합산.
    # augmented cycle 합산과는 순서가 달라 마지막 ulp에서 차이날 수 있음
    return PathSolution(route_cost(D_np, path), path)


# =====================================================================
#                            사용 예시
# =====================================================================
if __name__ == "__main__":
    D = [
        [0, 10, 15, 20],
        [10, 0, 35, 25],
        [15, 35, 0, 30],
        [20, 25, 30, 0],
    ]
    print(solve_cycle(D, verbose=True))
    print(solve_path(D))
