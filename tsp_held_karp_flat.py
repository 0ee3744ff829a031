"""
TSP Held-Karp Flat-Memory Engine (PyTorch)
==========================================
단일 연속 메모리 영역에 세 zone을 고정 배치하고, 테이블을 in-place로 채움.

메모리 레이아웃 (n 기준으로 호출 전에 크기 결정, page 단위로 올림):
  1) distance    : n × n float64,              d[u][v]    @ (u·n + v)·8
  2) cost        : 2^(n-1) × (n-1) float64,    cost[S][v] @ ((n-1)·S + v)·8
  3) predecessor : 2^(n-1) × (n-1) int32,      prev[S][v] @ ((n-1)·S + v)·4

가속 전략:
  - 동일 popcount 마스크를 텐서 배치로 처리 (마스크별 Python 루프 없음)
  - 도시 v마다 cost[S₂] 행을 gather → 행별 min
  - gather 텐서가 max_chunk_mb를 넘지 않도록 청크 분할
  - tie-break은 reference 엔진과 동일 (같은 값이면 작은 인덱스)

compute_cycle()은 zone 2, 3을 채우고 마지막 도시 인덱스만 반환.
cycle 역추적은 호출 측이 predecessor zone을 직접 읽어서 수행.
"""

import gc
import math
import numpy as np
import torch
from typing import Optional, Sequence, Tuple

from tsp_held_karp import DEPOT_SENTINEL

BYTES_PER_INT32 = 4
BYTES_PER_FLOAT64 = 8
BYTES_PER_PAGE = 65_536


class EngineError(RuntimeError):
    """flat 엔진 생성/실행 실패 (메모리 할당 등). 재시도 없음."""


def get_device(device: Optional[str] = None) -> torch.device:
    """CUDA > CPU 자동 선택. MPS는 float64 미지원이라 제외."""
    if device is not None:
        dev = torch.device(device)
        if dev.type == "mps":
            raise ValueError("MPS는 float64를 지원하지 않음 → exact 결과 보장 불가. cpu/cuda 사용.")
        return dev
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def flush_gpu(device: Optional[torch.device] = None):
    """GPU 메모리 강제 정리."""
    gc.collect()
    if device is not None and device.type == "cpu":
        return
    if torch.cuda.is_available():
        torch.cuda.synchronize()
        torch.cuda.empty_cache()


# =================================================================
#                    공유 메모리 영역 (3 zones)
# =================================================================
class SharedRegion:

    def __init__(self, n: int):
        w = n - 1
        M = 1 << w
        self.n = n

        self.distance_size = n * n * BYTES_PER_FLOAT64
        self.cost_size = M * w * BYTES_PER_FLOAT64
        self.predecessor_size = M * w * BYTES_PER_INT32

        self.distance_ptr = 0
        self.cost_ptr = self.distance_ptr + self.distance_size
        self.predecessor_ptr = self.cost_ptr + self.cost_size

        nbytes = self.distance_size + self.cost_size + self.predecessor_size
        self.pages = math.ceil(nbytes / BYTES_PER_PAGE)

        try:
            self.buffer = np.zeros(self.pages * BYTES_PER_PAGE, dtype=np.uint8)
        except (MemoryError, ValueError, OverflowError) as e:
            # 너무 큰 n이면 numpy가 MemoryError 대신 ValueError를 던짐
            raise EngineError(
                f"공유 메모리 할당 실패: {self.pages} pages "
                f"({self.pages * BYTES_PER_PAGE / 1024 ** 2:.0f} MB) for n={n}"
            ) from e

        # zone view (복사 없음, 같은 buffer 공유)
        self.distance_flat = self._zone(self.distance_ptr, self.distance_size, np.float64)
        self.cost_flat = self._zone(self.cost_ptr, self.cost_size, np.float64)
        self.predecessor_flat = self._zone(self.predecessor_ptr, self.predecessor_size, np.int32)

        self.distance = self.distance_flat.reshape(n, n)
        self.cost = self.cost_flat.reshape(M, w)
        self.predecessor = self.predecessor_flat.reshape(M, w)

    def _zone(self, ptr: int, size: int, dtype) -> np.ndarray:
        return self.buffer[ptr:ptr + size].view(dtype)

    @property
    def nbytes(self) -> int:
        return self.buffer.nbytes


# =================================================================
#                         Flat 엔진
# =================================================================
class FlatHeldKarpEngine:

    def __init__(self, D, device: Optional[str] = None,
                 verbose: bool = False, max_chunk_mb: int = 512):
        """
        Parameters
        ----------
        D : (n x n) 검증된 거리 행렬 (tsp_held_karp.as_distance_matrix 결과).
        device : 'cuda', 'cpu' 또는 None (자동).
        max_chunk_mb : gather 텐서 [chunk, n-1] 한 번의 최대 크기.
        """
        self.device = get_device(device)
        self.verbose = verbose
        self.max_chunk_mb = max_chunk_mb

        D_np = np.asarray(D, dtype=np.float64)
        assert D_np.ndim == 2 and D_np.shape[0] == D_np.shape[1], "D must be square"
        n = D_np.shape[0]

        self.n, self.W, self.depot = n, n - 1, n - 1
        self.M = 1 << self.W
        self.full = self.M - 1

        self.region = SharedRegion(n)
        self.region.distance[:] = D_np

        if self.verbose:
            print(f"[Device: {self.device}, dtype: float64] n={n}, M={self.M}, "
                  f"region ~{self._estimate_mem_mb():.1f} MB ({self.region.pages} pages)")

    def _estimate_mem_mb(self):
        # 공유 영역 + 디바이스 측 cost/prev/bit_set 테이블
        M, W = self.M, self.W
        device_tables = M * W * (BYTES_PER_FLOAT64 + BYTES_PER_INT32 + 1)
        return (self.region.nbytes + device_tables) / (1024 ** 2)

    # =================================================================
    #                    마스크 테이블 사전 계산
    # =================================================================
    def _precompute_tables(self):
        W, M, dev = self.W, self.M, self.device

        self._mask_range = torch.arange(M, device=dev, dtype=torch.long)
        self._bit_vals = (1 << torch.arange(W, device=dev, dtype=torch.long))

        # bit_set[m, u] = bool: bit u가 m에 있음
        self._bit_set = (self._mask_range.unsqueeze(1) & self._bit_vals.unsqueeze(0)) != 0
        self._popcount = self._bit_set.sum(dim=1)

        self._city_idx = torch.arange(W, device=dev, dtype=torch.long)

    def _alloc_tables(self):
        """cost/prev 텐서. CPU면 공유 영역 zone을 그대로 alias."""
        cost_zone = torch.from_numpy(self.region.cost)
        prev_zone = torch.from_numpy(self.region.predecessor)

        if self.device.type == "cpu":
            cost, prev = cost_zone, prev_zone
        else:
            try:
                cost = torch.empty(cost_zone.shape, dtype=torch.float64, device=self.device)
                prev = torch.empty(prev_zone.shape, dtype=torch.int32, device=self.device)
            except RuntimeError as e:
                raise EngineError(f"{self.device} 테이블 할당 실패 (n={self.n})") from e

        cost.fill_(math.inf)
        prev.fill_(DEPOT_SENTINEL)
        return cost_zone, prev_zone, cost, prev

    # =================================================================
    #                         Public Interface
    # =================================================================
    def compute_cycle(self) -> int:
        """zone 2, 3을 채우고 최적 마지막 도시 반환 (n=1이면 DEPOT_SENTINEL)."""
        if self.n == 1:
            return DEPOT_SENTINEL

        W, depot, dev = self.W, self.depot, self.device
        self._precompute_tables()
        cost_zone, prev_zone, cost, prev = self._alloc_tables()

        D_t = torch.from_numpy(self.region.distance).to(dev)
        self._D_t = D_t

        # ── |S| = 1: depot → v ──
        cost[self._bit_vals, self._city_idx] = D_t[depot, :W]

        # ── |S| = 2 .. W: popcount 배치 ──
        max_rows = max(1, (self.max_chunk_mb * 1024 * 1024)
                       // (W * (2 * BYTES_PER_FLOAT64 + 2)))

        for t in range(2, W + 1):
            layer = self._mask_range[self._popcount == t]  # [L]

            for v in range(W):
                sel = layer[self._bit_set[layer, v]]  # v ∈ S인 마스크
                prev_masks = sel ^ (1 << v)
                d_col = D_t[:W, v].unsqueeze(0)  # [1, W]

                for cs in range(0, sel.shape[0], max_rows):
                    ce = cs + max_rows
                    self._relax(cost, prev, sel[cs:ce], prev_masks[cs:ce], d_col, v)

            if self.verbose:
                print(f"  [layer {t:02d}/{W}] masks={layer.shape[0]:,}")

        # ── closing: cost[All][u] + d[u][depot] ──
        final = cost[self.full] + D_t[:W, depot]
        best = int(torch.nonzero(final == final.min())[0, 0].item())

        if cost is not cost_zone:
            # 디바이스 결과를 공유 영역으로 복사
            cost_zone.copy_(cost.cpu())
            prev_zone.copy_(prev.cpu())
            del cost, prev

        if self.verbose:
            print(f"  closing: best last city={best}, length={final[best].item():.6f}")
        return best

    def _relax(self, cost, prev, sel, prev_masks, d_col, v):
        """cost[S][v] = min_u cost[S₂][u] + d[u][v], 동률이면 작은 u."""
        W = self.W

        # scores[k, u] = cost[S₂_k][u] + d[u][v]
        scores = cost[prev_masks] + d_col  # [k, W]
        valid_last = self._bit_set[prev_masks]  # u ∈ S₂
        scores = scores.masked_fill(~valid_last, math.inf)

        best_val = scores.min(dim=1).values  # [k]

        # 최소값과 같은 u 중 가장 작은 인덱스
        hit = valid_last & (scores == best_val.unsqueeze(1))
        best_u = self._city_idx.expand_as(hit).masked_fill(~hit, W).min(dim=1).values

        cost[sel, v] = best_val
        prev[sel, v] = best_u.to(torch.int32)

    # =================================================================
    #                    GPU 메모리 관리
    # =================================================================
    def cleanup(self):
        """디바이스 텐서 해제. 공유 영역(region)은 역추적용으로 유지."""
        for attr in ['_mask_range', '_bit_vals', '_bit_set', '_popcount',
                     '_city_idx', '_D_t']:
            if hasattr(self, attr):
                delattr(self, attr)
        flush_gpu(self.device)

    def _print_gpu_mem(self, tag: str = ""):
        """CUDA 메모리 사용량 출력 (디버깅용)."""
        if self.device.type == "cuda":
            alloc = torch.cuda.memory_allocated(self.device) / (1024 ** 2)
            reserved = torch.cuda.memory_reserved(self.device) / (1024 ** 2)
            print(f"  [GPU mem {tag}] alloc={alloc:.1f}MB, reserved={reserved:.1f}MB")


def compute_cycle_flat(D: np.ndarray, device: Optional[str] = None,
                       verbose: bool = False,
                       max_chunk_mb: int = 512) -> Tuple[int, Sequence[int]]:
    """engine="flat" 진입점: (best, predecessor zone의 flat view)."""
    engine = FlatHeldKarpEngine(D, device=device, verbose=verbose,
                                max_chunk_mb=max_chunk_mb)
    try:
        best = engine.compute_cycle()
        if verbose:
            engine._print_gpu_mem("after fill")
    finally:
        engine.cleanup()
    return best, engine.region.predecessor_flat


# =====================================================================
#                            사용 예시
# =====================================================================
if __name__ == "__main__":
    import time
    from tsp_held_karp import solve_cycle

    rng = np.random.default_rng(42)
    N_CITIES = 16
    D = rng.random((N_CITIES, N_CITIES))
    np.fill_diagonal(D, 0)

    print(f"Selected device: {get_device()}")

    t0 = time.time()
    ref = solve_cycle(D, engine="reference")
    print(f"[reference] {ref}  ({time.time() - t0:.2f}s)")

    t0 = time.time()
    flat = solve_cycle(D, engine="flat", verbose=True)
    print(f"[flat]      {flat}  ({time.time() - t0:.2f}s)")
    print(f"  identical: {ref == flat}")
