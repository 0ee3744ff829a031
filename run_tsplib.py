"""
TSPLIB 파일 파서 + Held-Karp 솔버 실행기
==========================================
사용법:
  python run_tsplib.py ALL_tsp/gr17.tsp.gz
  python run_tsplib.py ALL_tsp/br17.atsp.gz --engine flat --device cuda
  python run_tsplib.py ALL_tsp/ulysses16.tsp --path --plot ulysses16_path.png
"""

import gzip
import math
import os
import sys
import time
import argparse
import numpy as np

from tsp_held_karp import ENGINES, MAX_CITIES, solve_cycle, solve_path


# =================================================================
#                      TSPLIB 파서
# =================================================================
SECTIONS = ('NODE_COORD_SECTION', 'EDGE_WEIGHT_SECTION', 'DISPLAY_DATA_SECTION')


def parse_tsplib(filepath: str, verbose: bool = True) -> dict:
    """
    .tsp / .atsp (또는 .gz) 파일을 파싱.
    반환: {
        'name': str,
        'dimension': int,
        'edge_weight_type': str,
        'D': np.ndarray (N x N, FULL_MATRIX면 비대칭 유지),
        'coords': np.ndarray or None (N x 2),
    }
    """
    opener = gzip.open if filepath.endswith('.gz') else open
    with opener(filepath, 'rt', encoding='utf-8', errors='replace') as f:
        meta, sections = _split_sections(f)

    name = meta.get('NAME', os.path.basename(filepath))
    dimension = int(meta.get('DIMENSION', 0))
    edge_weight_type = meta.get('EDGE_WEIGHT_TYPE', 'EUC_2D').upper()
    edge_weight_format = meta.get('EDGE_WEIGHT_FORMAT', '').upper()

    if verbose:
        print(f"  Name: {name}")
        print(f"  Dimension: {dimension}")
        print(f"  Edge weight type: {edge_weight_type}")
        if edge_weight_format:
            print(f"  Edge weight format: {edge_weight_format}")

    coords = None
    if edge_weight_type == 'EXPLICIT':
        values = [float(tok) for line in sections.get('EDGE_WEIGHT_SECTION', [])
                  for tok in line.split()]
        D = _explicit_matrix(values, dimension, edge_weight_format)
        if 'DISPLAY_DATA_SECTION' in sections:
            coords = _parse_coords(sections['DISPLAY_DATA_SECTION'], dimension)
    else:
        coords = _parse_coords(sections.get('NODE_COORD_SECTION', []), dimension)
        D = _coord_matrix(coords, edge_weight_type)

    if D.shape != (dimension, dimension):
        raise ValueError(f"Distance matrix shape {D.shape} != ({dimension}, {dimension})")

    return {
        'name': name,
        'dimension': dimension,
        'edge_weight_type': edge_weight_type,
        'D': D,
        'coords': coords,
    }


def _split_sections(lines):
    """헤더 'KEY : value' 와 섹션별 데이터 줄 분리."""
    meta = {}
    sections = {}
    current = None
    for line in lines:
        line = line.strip()
        if not line:
            continue
        if line == 'EOF':
            break
        if line in SECTIONS:
            current = sections.setdefault(line, [])
            continue
        if current is not None and ':' not in line:
            current.append(line)
            continue
        if ':' in line:
            key, val = line.split(':', 1)
            meta[key.strip().upper()] = val.strip()
            current = None
    return meta, sections


def _parse_coords(data_lines: list, n: int) -> np.ndarray:
    """'idx x y' 줄 → (N, 2) 좌표 (1-indexed → 0-indexed)."""
    coords = np.zeros((n, 2), dtype=np.float64)
    seen = set()
    for line in data_lines:
        parts = line.split()
        if len(parts) < 3:
            continue
        idx = int(parts[0]) - 1
        if 0 <= idx < n:
            coords[idx] = float(parts[1]), float(parts[2])
            seen.add(idx)
    if len(seen) != n:
        raise ValueError(f"Expected {n} coords, got {len(seen)}")
    return coords


# =================================================================
#                      거리 함수 (TSPLIB 규칙)
# =================================================================
def _nint(x: float) -> int:
    return int(x + 0.5)


def _geo_rad(c: float) -> float:
    deg = int(c)
    return math.pi * (deg + 5.0 * (c - deg) / 3.0) / 180.0


def _geo(c1, c2) -> int:
    lat1, lon1 = _geo_rad(c1[0]), _geo_rad(c1[1])
    lat2, lon2 = _geo_rad(c2[0]), _geo_rad(c2[1])
    q1 = math.cos(lon1 - lon2)
    q2 = math.cos(lat1 - lat2)
    q3 = math.cos(lat1 + lat2)
    return int(6378.388 * math.acos(0.5 * ((1.0 + q1) * q2 - (1.0 - q1) * q3)) + 1.0)


def _att(c1, c2) -> int:
    r = math.sqrt(((c1[0] - c2[0]) ** 2 + (c1[1] - c2[1]) ** 2) / 10.0)
    t = _nint(r)
    return t + 1 if t < r else t


METRICS = {
    'EUC_2D': lambda a, b: _nint(math.hypot(a[0] - b[0], a[1] - b[1])),
    'CEIL_2D': lambda a, b: math.ceil(math.hypot(a[0] - b[0], a[1] - b[1])),
    'MAN_2D': lambda a, b: _nint(abs(a[0] - b[0]) + abs(a[1] - b[1])),
    'MAX_2D': lambda a, b: max(_nint(abs(a[0] - b[0])), _nint(abs(a[1] - b[1]))),
    'ATT': _att,
    'GEO': _geo,
}


def _coord_matrix(coords: np.ndarray, edge_weight_type: str) -> np.ndarray:
    """좌표 → 대칭 거리 행렬."""
    if edge_weight_type not in METRICS:
        raise ValueError(f"지원하지 않는 EDGE_WEIGHT_TYPE '{edge_weight_type}'")
    metric = METRICS[edge_weight_type]

    n = len(coords)
    D = np.zeros((n, n), dtype=np.float64)
    for i in range(n):
        for j in range(i + 1, n):
            D[i, j] = D[j, i] = metric(coords[i], coords[j])
    return D


# =================================================================
#                      EXPLICIT 가중치
# =================================================================
def _explicit_cells(n: int, fmt: str):
    """포맷별 (i, j) 순서. FULL_MATRIX 외에는 대칭."""
    if fmt == 'FULL_MATRIX':
        return [(i, j) for i in range(n) for j in range(n)]
    if fmt == 'UPPER_ROW':
        return [(i, j) for i in range(n) for j in range(i + 1, n)]
    if fmt == 'LOWER_ROW':
        return [(i, j) for i in range(1, n) for j in range(i)]
    if fmt == 'UPPER_DIAG_ROW':
        return [(i, j) for i in range(n) for j in range(i, n)]
    if fmt == 'LOWER_DIAG_ROW':
        return [(i, j) for i in range(n) for j in range(i + 1)]
    return None


def _guess_format(n: int, count: int) -> str:
    guesses = {
        n * n: 'FULL_MATRIX',
        n * (n - 1) // 2: 'UPPER_ROW',
        n * (n + 1) // 2: 'LOWER_DIAG_ROW',
    }
    if count not in guesses:
        raise ValueError(f"Unknown EDGE_WEIGHT_FORMAT, got {count} values for n={n}")
    return guesses[count]


def _explicit_matrix(values: list, n: int, fmt: str) -> np.ndarray:
    cells = _explicit_cells(n, fmt)
    if cells is None:
        fmt = _guess_format(n, len(values))
        cells = _explicit_cells(n, fmt)
    if len(values) < len(cells):
        raise ValueError(f"{fmt}: expected {len(cells)} values, got {len(values)}")

    D = np.zeros((n, n), dtype=np.float64)
    symmetric = fmt != 'FULL_MATRIX'
    for (i, j), val in zip(cells, values):
        D[i, j] = val
        if symmetric:
            D[j, i] = val
    return D


# =================================================================
#                  알려진 최적해 (Held-Karp 범위 인스턴스)
# =================================================================
KNOWN_OPTIMAL = {
    'burma14': 3323, 'ulysses16': 6859, 'gr17': 2085,
    'br17': 39, 'gr21': 2707, 'ulysses22': 7013, 'gr24': 1272,
}


def get_known_optimal(name: str):
    """이름으로 최적해 검색 (대소문자 무시). 없으면 None."""
    return {k.lower(): v for k, v in KNOWN_OPTIMAL.items()}.get(name.lower())


# =================================================================
#                         메인
# =================================================================
def main(argv=None):
    parser = argparse.ArgumentParser(
        description='TSPLIB 파일을 Held-Karp (exact) 로 풀기'
    )
    parser.add_argument('file', type=str, help='.tsp / .atsp (또는 .gz) 파일 경로')
    parser.add_argument('--path', action='store_true',
                        help='cycle 대신 Hamiltonian path 계산')
    parser.add_argument('--engine', choices=ENGINES, default='reference',
                        help='DP 엔진 (기본 reference)')
    parser.add_argument('--device', type=str, default=None,
                        help='flat 엔진 디바이스: cuda/cpu (기본 자동)')
    parser.add_argument('--max-cities', type=int, default=MAX_CITIES,
                        help=f'허용 최대 도시 수 (기본 {MAX_CITIES})')
    parser.add_argument('--verbose', action='store_true', help='엔진 진행 상황 출력')
    parser.add_argument('--plot', type=str, default=None,
                        help='결과 경로를 PNG로 저장 (좌표가 있는 인스턴스만)')

    args = parser.parse_args(argv)

    # ── 파일 파싱 ──
    print(f"\n{'='*60}")
    print(f"  Loading: {args.file}")
    print(f"{'='*60}")

    if not os.path.exists(args.file):
        print(f"Error: 파일 없음 → {args.file}")
        sys.exit(1)

    tsp = parse_tsplib(args.file)
    D = tsp['D']
    n = tsp['dimension']

    # 2^n 메모리 → 미리 차단
    if n > args.max_cities:
        slots = (n - 1) * 2 ** (n - 1) if not args.path else n * 2 ** n
        print(f"\n  ⚠ n={n} > max-cities={args.max_cities}")
        print(f"    DP 테이블 {slots:,} 슬롯 → "
              f"~{slots * 12 / (1024 ** 3):.1f} GB")
        sys.exit(1)

    known_opt = None if args.path else get_known_optimal(tsp['name'])
    if known_opt:
        print(f"  Known optimal: {known_opt}")
    print(f"  D range: [{D.min():.1f}, {D.max():.1f}]")

    # ── 솔버 실행 ──
    mode = 'path' if args.path else 'cycle'
    print(f"\n{'='*60}")
    print(f"  Solving: {tsp['name']} ({mode}, engine={args.engine})")
    print(f"{'='*60}")

    options = {'verbose': args.verbose}
    if args.engine == 'flat':
        options['device'] = args.device

    solve = solve_path if args.path else solve_cycle
    t0 = time.time()
    length, route = solve(D, engine=args.engine, max_cities=args.max_cities, **options)
    elapsed = time.time() - t0

    # ── 결과 출력 ──
    print(f"\n{'='*60}")
    print(f"  Result: {tsp['name']}")
    print(f"{'='*60}")
    print(f"  Cost:    {length:.2f}")
    if not math.isfinite(length):
        print(f"  ⚠ 유한한 {mode} 없음 (연결되지 않은 도시)")
    if known_opt:
        gap = (length - known_opt) / known_opt * 100
        print(f"  Optimal: {known_opt}")
        print(f"  Gap:     {gap:+.2f}%")
    print(f"  Route:   {'→'.join(str(c) for c in route)}")
    print(f"  Time:    {elapsed:.2f}s")
    print(f"  Engine:  {args.engine}")

    # ── 시각화 ──
    if args.plot:
        if tsp['coords'] is None:
            print("  ⚠ 좌표 없는 인스턴스 → plot 생략")
        else:
            from visualize_tour import save_tour
            save_tour(tsp['coords'], route, args.plot, closed=not args.path,
                      title=f"{tsp['name']} {mode}  cost={length:.2f}")
            print(f"\n  Plot saved: {args.plot}")


if __name__ == '__main__':
    main()
