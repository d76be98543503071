"""
Generate overlapping synthetic partial maps (.npy) with unknown relative poses.

- Creates a structured scene (terrain with hills plus box-shaped buildings)
  so keypoints and descriptors have distinctive geometry to latch onto.
- Cuts it into overlapping windows, one per simulated agent.
- Moves every window by a random rigid transform and adds sensor noise.
- Writes data/synthetic_maps/map_XX.npy plus ground_truth.txt with the
  transform applied to each map.
"""
from __future__ import annotations

import argparse
import math
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.io import save_transform_table
from map_merge.graph import GlobalTransformTable


def make_scene(extent=40.0, spacing=0.1, seed=1):
    rng = np.random.default_rng(seed)
    n = int(extent / spacing)
    x = (np.arange(n) - n / 2) * spacing
    X, Y = np.meshgrid(x, x)
    Z = 1.0 * np.sin(0.15 * X) * np.cos(0.1 * Y) + 0.3 * np.sin(0.4 * X + 0.3)
    ground = np.column_stack([X.ravel(), Y.ravel(), Z.ravel()])

    boxes = []
    for _ in range(12):
        cx, cy = rng.uniform(-extent / 2 + 3, extent / 2 - 3, size=2)
        sx, sy, h = rng.uniform(1.0, 3.0), rng.uniform(1.0, 3.0), rng.uniform(1.5, 4.0)
        boxes.append(_box_surface(cx, cy, sx, sy, h, spacing))
    return np.vstack([ground] + boxes)


def _box_surface(cx, cy, sx, sy, h, spacing):
    xs = np.arange(-sx / 2, sx / 2, spacing)
    ys = np.arange(-sy / 2, sy / 2, spacing)
    zs = np.arange(0.0, h, spacing)
    faces = []
    for x0 in (-sx / 2, sx / 2):
        Yg, Zg = np.meshgrid(ys, zs)
        faces.append(np.column_stack([np.full(Yg.size, x0), Yg.ravel(), Zg.ravel()]))
    for y0 in (-sy / 2, sy / 2):
        Xg, Zg = np.meshgrid(xs, zs)
        faces.append(np.column_stack([Xg.ravel(), np.full(Xg.size, y0), Zg.ravel()]))
    Xg, Yg = np.meshgrid(xs, ys)
    faces.append(np.column_stack([Xg.ravel(), Yg.ravel(), np.full(Xg.size, h)]))
    return np.vstack(faces) + np.array([cx, cy, 0.0])


def random_rigid_transform(rng, max_angle_deg=30.0, max_translation=5.0):
    rz = math.radians(rng.uniform(-max_angle_deg, max_angle_deg))
    Rz = np.array([[math.cos(rz), -math.sin(rz), 0], [math.sin(rz), math.cos(rz), 0], [0, 0, 1]])
    T = np.eye(4)
    T[:3, :3] = Rz
    T[:3, 3] = rng.uniform(-max_translation, max_translation, size=3) * np.array([1.0, 1.0, 0.1])
    return T


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic partial maps")
    parser.add_argument("--maps", type=int, default=3, help="Number of partial maps")
    parser.add_argument("--noise", type=float, default=0.01, help="Gaussian noise sigma")
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--out", type=str, default=str(Path(__file__).parent.parent / "data" / "synthetic_maps"))
    args = parser.parse_args()

    rng = np.random.default_rng(args.seed)
    scene = make_scene(seed=args.seed)
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    # Windows slide along x with ~50% overlap between neighbours
    width = 20.0
    step = (40.0 - width) / max(1, args.maps - 1)
    truth = GlobalTransformTable(args.maps)
    for i in range(args.maps):
        x0 = -20.0 + i * step
        window = scene[(scene[:, 0] >= x0) & (scene[:, 0] < x0 + width)]
        T = random_rigid_transform(rng)
        moved = window @ T[:3, :3].T + T[:3, 3]
        moved += rng.normal(scale=args.noise, size=moved.shape)
        np.save(out_dir / f"map_{i:02d}.npy", moved)
        truth.set(i, T)
        print(f"Wrote: {out_dir / f'map_{i:02d}.npy'} ({len(moved)} points)")

    save_transform_table(truth, out_dir / "ground_truth.txt")


if __name__ == "__main__":
    main()
