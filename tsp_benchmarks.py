"""
Held-Karp 엔진 벤치마크
=======================
reference (순수 Python) vs flat (공유 메모리 + torch) 속도 비교 + 결과 동일성 확인.

사용법:
  from tsp_benchmarks import random_cities, euclidean_matrix, run_engines

  D = euclidean_matrix(random_cities(12, np.random.default_rng(42)))
  results = run_engines(D)
  for name, (solution, elapsed) in results.items():
      print(f"{name:12s}  cost={solution.length:.4f}  time={elapsed:.4f}s")

CLI:
  python tsp_benchmarks.py --n 16 --trials 3
  python tsp_benchmarks.py --n 20 --engines flat --device cuda --path
"""

import time
import argparse
import numpy as np
from typing import Dict, List, Optional, Sequence, Tuple

from tsp_held_karp import ENGINES, solve_cycle, solve_path


# =================================================================
#  유틸: 랜덤 인스턴스
# =================================================================
def random_cities(n: int, rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """단위 정사각형 안의 랜덤 도시 (n, 2)."""
    if rng is None:
        rng = np.random.default_rng()
    return rng.random((n, 2))


def euclidean_matrix(xys: np.ndarray) -> np.ndarray:
    """Cartesian 거리 행렬 (대칭, 대각선 0)."""
    xys = np.asarray(xys, dtype=np.float64)
    diff = xys[:, None, :] - xys[None, :, :]
    return np.sqrt((diff ** 2).sum(axis=-1))


# =================================================================
#  엔진 실행
# =================================================================
def run_engines(D: np.ndarray,
                engines: Sequence[str] = ENGINES,
                path: bool = False,
                device: Optional[str] = None,
                verbose: bool = False) -> Dict[str, Tuple[tuple, float]]:
    """
    같은 D로 각 엔진 실행.

    Returns: {engine: (solution, elapsed_seconds)}
    """
    solve = solve_path if path else solve_cycle
    results = {}
    for name in engines:
        options = {'verbose': verbose}
        if name == 'flat':
            options['device'] = device
        t0 = time.time()
        solution = solve(D, engine=name, **options)
        results[name] = (solution, time.time() - t0)
    return results


def engines_agree(results: Dict[str, Tuple[tuple, float]]) -> bool:
    """모든 엔진의 (length, tour)가 정확히 같은지 (근사 비교 아님)."""
    solutions = [sol for sol, _ in results.values()]
    return all(sol == solutions[0] for sol in solutions[1:])


def print_results(results: Dict[str, Tuple[tuple, float]]):
    """벤치마크 결과 테이블 출력."""
    print(f"\n{'Engine':<12s} {'Cost':>12s} {'Time (s)':>10s}  Tour")
    print("-" * 60)
    for name, (solution, elapsed) in results.items():
        tour = '→'.join(map(str, solution[1]))
        print(f"{name:<12s} {solution.length:>12.6f} {elapsed:>10.4f}  {tour}")


# =================================================================
#  CLI
# =================================================================
def main(argv=None):
    parser = argparse.ArgumentParser(description='Held-Karp 엔진 비교')
    parser.add_argument('--n', type=int, default=16, help='도시 수 (기본 16)')
    parser.add_argument('--trials', type=int, default=1, help='랜덤 trial 수')
    parser.add_argument('--seed', type=int, default=42, help='시드')
    parser.add_argument('--engines', nargs='+', choices=ENGINES, default=list(ENGINES),
                        help='실행할 엔진 (기본 전부)')
    parser.add_argument('--path', action='store_true', help='cycle 대신 path')
    parser.add_argument('--device', type=str, default=None, help='flat 엔진 디바이스: cuda/cpu')
    parser.add_argument('--verbose', action='store_true', help='엔진 진행 상황 출력')

    args = parser.parse_args(argv)

    times: Dict[str, List[float]] = {name: [] for name in args.engines}
    mismatches = 0

    for trial in range(args.trials):
        seed = args.seed + trial
        D = euclidean_matrix(random_cities(args.n, np.random.default_rng(seed)))

        results = run_engines(D, engines=args.engines, path=args.path,
                              device=args.device, verbose=args.verbose)
        agree = engines_agree(results)
        mismatches += not agree
        for name, (_, elapsed) in results.items():
            times[name].append(elapsed)

        if args.trials == 1:
            print(f"\n{'='*60}")
            print(f"  Random cities (n={args.n}), seed={seed}, "
                  f"{'path' if args.path else 'cycle'}")
            print(f"{'='*60}")
            print_results(results)
            print(f"\n  Engines agree: {agree}")

    # 여러 trial 평균
    if args.trials > 1:
        print(f"\n{'='*60}")
        print(f"  {args.trials} trials, n={args.n}, seed={args.seed}~{args.seed + args.trials - 1}")
        print(f"{'='*60}")
        print(f"\n{'Engine':<12s} {'Time (mean ± std)':>22s}")
        print("-" * 36)
        for name, ts in times.items():
            arr = np.array(ts)
            print(f"{name:<12s} {arr.mean():>10.4f}s ± {arr.std():>7.4f}s")
        print(f"\n  Mismatched trials: {mismatches}/{args.trials}")

    return mismatches


if __name__ == '__main__':
    main()
