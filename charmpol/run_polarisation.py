"""
Main entry point for the charm-hadron polarisation analysis.

Reads D*+ or Lambda_c+ candidate tables, computes the rest-frame decay
angle of the probe daughter with respect to the helicity, production,
beam and random axes, and fills sparse histograms of (mass, pT, pz, y,
cos(theta*) [, ML scores] [, rotation flag]).

Supports serial execution, local multi-process parallelism via
ProcessPoolExecutor and a local Dask cluster.
"""

import argparse
import glob
import logging
import os
import time
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, as_completed

import numpy as np
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt

from charmpol.analysis.config import load_config
from charmpol.analysis.histograms import merge_registries
from charmpol.analysis.io import load_candidates, save_histograms
from charmpol.analysis.task import PolarisationTask


LOGGER = logging.getLogger("charmpol")

EXECUTORS = ("serial", "processes", "dask")


# Argument parsing
def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Charm-hadron polarisation analysis over candidate tables."
    )
    parser.add_argument(
        "--config",
        default="config/config.yaml",
        help="Path to YAML configuration file.",
    )
    parser.add_argument(
        "--n-workers",
        type=int,
        default=None,
        help="Number of workers for parallel file processing.",
    )
    parser.add_argument(
        "--executor",
        choices=EXECUTORS,
        default=None,
        help="How to run the per-file tasks (default: from config).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the random reference axis (default: from config).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser.parse_args(argv)


def file_rng(config, index):
    """
    Random generator of one file: independent streams per file, and
    reproducible when `random_seed` is set.
    """
    seed = config.get("random_seed")
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([seed, index])


# Per-file analysis
def process_file(filename, config, index=0):
    """
    Per-file polarisation analysis.

    Steps:
      1. Validate the configuration and book the histograms.
      2. Load the candidate table of the active decay channel.
      3. Select candidates, loop over mass hypotheses and rotations,
         compute cos(theta*) and fill the histograms.
    """
    task = PolarisationTask(config, rng=file_rng(config, index))
    candidates = load_candidates(filename, task.mode, config.get("tree_name"))
    n_filled = task.process(candidates)

    info = {
        "filename": filename,
        "n_candidates": len(candidates),
        "n_selected": task.n_candidates,
        "n_filled": n_filled,
        "n_skipped": task.n_skipped,
    }
    return task.histograms, info


def safe_process_file(fname, config, index=0):
    """
    Wrapper so that a bad file doesn't kill the whole job.
    """
    try:
        return process_file(fname, config, index)
    except Exception as e:
        LOGGER.warning("Error in file %s: %s", fname, e)
        return None


def run_serial(files, config):
    results = []
    for i, fname in enumerate(files):
        out = safe_process_file(fname, config, i)
        if out is not None:
            results.append(out)
        print(f"[{i + 1}/{len(files)}] Completed {fname}")
    return results


def run_processes(files, config, n_workers):
    results = []
    with ProcessPoolExecutor(max_workers=n_workers) as pool:
        future_to_file = {
            pool.submit(safe_process_file, fname, config, i): fname
            for i, fname in enumerate(files)
        }
        for i, future in enumerate(as_completed(future_to_file), start=1):
            fname = future_to_file[future]
            try:
                out = future.result()
            except Exception as e:
                LOGGER.error("%s: %s", fname, e)
                continue
            if out is not None:
                results.append(out)
            print(f"[{i}/{len(files)}] Completed {fname}")
    return results


def run_dask(files, config, n_workers):
    from charmpol.distributed.executor import compute_tasks, create_local_client, map_files

    client = create_local_client(n_workers=n_workers)
    try:
        tasks = map_files(client, files, safe_process_file, config)
        outputs = compute_tasks(client, tasks)
    finally:
        client.close()
    return [out for out in outputs if out is not None]


def plot_projection(h1d, path, title):
    counts = h1d.values()
    edges = h1d.axes[0].edges
    centers = 0.5 * (edges[:-1] + edges[1:])
    errors = np.sqrt(counts)

    fig, ax = plt.subplots()
    ax.step(edges[:-1], counts, where="post", label="Candidates")
    ax.errorbar(
        centers,
        counts,
        yerr=errors,
        fmt=".",
        markersize=2,
        linewidth=0.5,
        label="Statistical errors",
    )
    ax.set_xlabel(h1d.axes[0].label)
    ax.set_ylabel("Counts")
    ax.set_title(title)
    ax.legend(loc="best", frameon=False)
    fig.tight_layout()
    fig.savefig(path)
    plt.close(fig)


def make_plots(registry, outdir):
    for angle_axis, h in registry.items():
        cos_name = f"cos_theta_star_{angle_axis}"
        plot_projection(
            h.project(cos_name),
            os.path.join(outdir, f"{cos_name}.png"),
            f"Decay angle w.r.t. {angle_axis} axis",
        )
    # the mass axis is the same in every histogram
    h = next(iter(registry.values()))
    plot_projection(
        h.project("inv_mass"),
        os.path.join(outdir, "inv_mass.png"),
        "Invariant mass",
    )


def summarise(registry):
    lines = []
    for angle_axis, h in registry.items():
        h1d = h.project(f"cos_theta_star_{angle_axis}")
        counts = h1d.values()
        centers = h1d.axes[0].centers
        total = counts.sum()
        mean_cos = np.sum(centers * counts) / total if total > 0 else float("nan")
        lines.append(
            f"{h.name}: {h.entries} entries, {len(h)} populated bins, "
            f"{h.n_dropped} out of range, <cos(theta*)> = {mean_cos:.4f}"
        )
    return lines


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config(args.config)
    if args.seed is not None:
        config["random_seed"] = args.seed

    # fatal configuration errors surface here, before any file is read
    PolarisationTask(config)

    pattern = os.path.join(config["data_dir"], config["file_pattern"])
    files = sorted(glob.glob(pattern))

    if not files:
        raise RuntimeError(f"No input files found for pattern {pattern}")

    print(f"Found {len(files)} input files.")

    executor = args.executor or config.get("executor", "processes")
    if executor not in EXECUTORS:
        raise ValueError(f"Unknown executor '{executor}', expected one of {EXECUTORS}")

    n_workers = args.n_workers or config.get("n_workers", 1)
    max_procs = multiprocessing.cpu_count() or 1
    if n_workers > max_procs:
        LOGGER.info(
            "Requested %d workers but only %d cores available; using %d.",
            n_workers, max_procs, max_procs,
        )
        n_workers = max_procs
    if n_workers == 1 and executor == "processes":
        # avoids multiprocessing overhead for a single worker
        executor = "serial"

    print(f"Using {n_workers} worker(s) with the {executor} executor.")

    start_time = time.perf_counter()

    if executor == "serial":
        results = run_serial(files, config)
    elif executor == "processes":
        results = run_processes(files, config, n_workers)
    else:
        results = run_dask(files, config, n_workers)

    wall_time = time.perf_counter() - start_time

    if not results:
        raise RuntimeError("No successful per-file results; nothing to merge.")

    registries, infos = zip(*results)
    total = merge_registries(registries)

    outdir = config["output_dir"]
    written = save_histograms(total, outdir)

    if config.get("analysis", {}).get("make_plots", True):
        make_plots(total, outdir)

    total_candidates = sum(info["n_selected"] for info in infos)
    total_filled = sum(info["n_filled"] for info in infos)

    # Final summary
    print(f"Processed {len(results)} files.")
    print(f"Total selected candidates: {total_candidates}")
    print(f"Total evaluations filled: {total_filled}")
    for line in summarise(total):
        print(line)
    print(f"Total wall time: {wall_time:.2f} s")
    if wall_time > 0:
        print(f"Average processing rate: {total_candidates / wall_time:.1f} candidates/s")
    print(f"Saved {len(written)} output files to {outdir}")


if __name__ == "__main__":
    main()
