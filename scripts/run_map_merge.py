"""
Merge partial point cloud maps into one global map.

Loads the maps, estimates pairwise transforms, reconciles them on the
maximum confidence spanning tree and writes the merged map together with the
global transform table.
"""

import sys
import argparse
import time
from pathlib import Path

# Add the src to the path to import modules
sys.path.append(str(Path(__file__).parent.parent / "src"))

from map_merge.io import load_maps, export_map, save_transform_table
from map_merge.pipeline import MapMerger
from map_merge.utils.config import load_config
from map_merge.utils.logging import setup_logger, configure_logging


def main():
    parser = argparse.ArgumentParser(description="Merge partial point cloud maps")
    parser.add_argument("maps", nargs="+", help="Map files (.las/.laz/.npy/.xyz/.txt)")
    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Merged map output path (.laz/.las/.npy); defaults to <paths.output_dir>/merged.laz",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML configuration file (defaults to config/default.yaml)",
    )
    parser.add_argument(
        "--transforms-out",
        type=str,
        default=None,
        help="Where to save the global transform table (defaults next to the output)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Override parallel.n_workers (1 disables the process pool)",
    )
    args = parser.parse_args()

    cfg = load_config(args.config)
    logger = setup_logger("map_merge.run")
    configure_logging(cfg.logging.level, cfg.logging.file)

    output = Path(args.output) if args.output else Path(cfg.paths.output_dir) / "merged.laz"
    transforms_out = Path(args.transforms_out) if args.transforms_out else output.with_name(output.stem + "_transforms.txt")

    start = time.time()
    clouds = load_maps(args.maps)

    n_workers = args.workers if args.workers is not None else cfg.parallel.n_workers
    merger = MapMerger(cfg.merging, parallel=cfg.parallel.enabled, n_workers=n_workers)
    merged, result = merger.merge(clouds)

    accepted = {est.pair for est in result.accepted}
    for est in result.estimates:
        status = "accepted" if est.pair in accepted else "rejected"
        logger.info(f"Edge ({est.source_idx}, {est.target_idx}): confidence {est.confidence:.3f} [{status}]")
    for i, path in enumerate(args.maps):
        state = "registered" if result.global_transforms.is_present(i) else "dropped"
        logger.info(f"{Path(path).name}: {state}")

    export_map(merged, output)
    save_transform_table(result.global_transforms, transforms_out)
    logger.info(
        f"Merged {len(result.global_transforms.present_indices)} of {len(clouds)} maps "
        f"(reference map {result.reference_frame}) in {time.time() - start:.1f}s"
    )


if __name__ == "__main__":
    main()
