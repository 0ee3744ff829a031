"""
Tour 시각화: 좌표 위에 cycle / path 그리기
===================================
사용법:
  from visualize_tour import save_tour
  save_tour(coords, solution.cycle, "tour.png")
  save_tour(coords, solution.path, "path.png", closed=False)
"""

import numpy as np
import matplotlib
import matplotlib.pyplot as plt


def plot_tour(coords, tour, ax=None, closed: bool = True, title: str = None):
    """
    coords : (N, 2) 좌표.
    tour : 도시 순서. cycle이면 [0, ..., 0] (마지막 = 처음), path면 길이 N.
    closed : path인데 끝점 → 시작점을 잇고 싶지 않으면 False.
    """
    coords = np.asarray(coords, dtype=np.float64)
    if ax is None:
        _, ax = plt.subplots(figsize=(7, 7))

    order = list(tour)
    if closed and order and order[0] != order[-1]:
        order.append(order[0])

    xy = coords[order]
    ax.plot(xy[:, 0], xy[:, 1], '-', color='#2196F3', linewidth=1.5, zorder=1)
    ax.scatter(coords[:, 0], coords[:, 1], s=30, color='#424242', zorder=2)

    # 시작 도시 강조
    start = order[0]
    ax.scatter(*coords[start], s=120, marker='*', color='#F44336', zorder=3,
               label=f'start={start}')
    if not closed:
        end = order[-1]
        ax.scatter(*coords[end], s=80, marker='s', color='#4CAF50', zorder=3,
                   label=f'end={end}')

    for i, (x, y) in enumerate(coords):
        ax.annotate(str(i), (x, y), textcoords='offset points', xytext=(4, 4), fontsize=7)

    ax.set_aspect('equal', adjustable='datalim')
    ax.grid(True, alpha=0.3)
    ax.legend(fontsize=8)
    if title:
        ax.set_title(title, fontsize=10, fontweight='bold')
    return ax


def save_tour(coords, tour, out_path: str, closed: bool = True,
              title: str = None, dpi: int = 150):
    """plot_tour 결과를 PNG로 저장."""
    fig, ax = plt.subplots(figsize=(7, 7))
    plot_tour(coords, tour, ax=ax, closed=closed, title=title)
    fig.savefig(out_path, dpi=dpi, bbox_inches='tight')
    plt.close(fig)
    return out_path


if __name__ == '__main__':
    from tsp_held_karp import solve_cycle
    from tsp_benchmarks import random_cities, euclidean_matrix

    matplotlib.use('Agg')
    xys = random_cities(12, np.random.default_rng(0))
    sol = solve_cycle(euclidean_matrix(xys))
    print(sol)
    save_tour(xys, sol.cycle, 'tour.png', title=f'cost={sol.length:.4f}')
    print('saved tour.png')
