#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
visit_segmentation_pipeline.py

Reader segmentation from website-visit events. One parameterized pipeline, run twice:
  1) site sections  : allow-listed sections -> user x section counts
  2) article tags   : events of one section, sub-tags rewritten by (pattern, label) rules
                      -> user x tag counts

Each run:
  filter -> aggregate (zero-filled counts) -> standardize (ddof=0, zero-variance drop|raise)
  -> factor loadings (principal axis + varimax, heatmap only)
  -> elbow curve (advisory) -> k-means with seeded restarts -> segment report

Outputs per run in --outdir (prefix = run name):
- <name>_user_clusters.csv
- <name>_segment_summary.csv, <name>_traffic_sources.csv, <name>_share_networks.csv
- <name>_cluster_profiles.csv, <name>_cluster_centers.csv, <name>_loadings.csv, <name>_elbow.csv
- <name>_loadings.png, <name>_elbow.png, <name>_clusters_2d.png, <name>_segments.png,
  <name>_traffic_sources.png
- <name>_commentary.txt

Run:
  python visit_segmentation_pipeline.py --csv data/visit_events.csv
  python visit_segmentation_pipeline.py --demo
"""
import argparse
import os
import warnings
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import pandas as pd
import matplotlib

matplotlib.use("Agg")

from sample_data import simulate_visit_events
from segment_report import (
    cluster_profiles,
    commentary_lines,
    save_2d_plot,
    save_elbow_plot,
    save_loadings_heatmap,
    save_segment_bars,
    save_summary_tables,
    save_traffic_source_plot,
    social_network_breakdown,
    summarize_segments,
    traffic_source_breakdown,
    write_commentary,
)
from topic_clustering import TopicKMeans, elbow_curve, principal_axis_loadings
from visit_features import (
    StandardizedMatrix,
    build_user_category_matrix,
    clean_events,
    explode_tags,
    filter_allowed,
    read_visit_events,
    standardize_matrix,
)

RANDOM_STATE = 42

# -------------------------
# Config (tweak if needed)
# -------------------------
OUTDIR = "outputs_segments"
SECTION_ALLOWLIST = ["news", "sport", "business", "culture", "lifestyle", "technology", "travel", "opinion"]
TAG_SECTION = "sport"
# (regex matched case-insensitively against each sub-tag, canonical label); first match wins, no match -> dropped
TAG_REWRITE_RULES = [
    (r"^(football|soccer|premier-?league)", "football"),
    (r"^(tennis|wimbledon)", "tennis"),
    (r"^cricket", "cricket"),
    (r"^(f1|formula-?(1|one))$", "formula_one"),
    (r"^rugby", "rugby"),
    (r"^golf", "golf"),
    (r"^(cycling|tour-de-france)", "cycling"),
    (r"^(athletics|olympics)", "athletics"),
]
SECTION_K = 4
TAG_K = 3
N_FACTORS = 3
N_RESTARTS = 25
MAX_ITER = 300
ELBOW_K_MIN = 1
ELBOW_K_MAX = 10
TOP_SOURCES = 3


@dataclass
class PipelineConfig:
    name: str
    category_col: str
    categories: Sequence[str]
    n_clusters: int
    n_factors: int
    section_filter: Optional[str] = None
    tag_rules: Optional[Sequence[Tuple[str, str]]] = None


@dataclass
class PipelineResult:
    config: PipelineConfig
    matrix: pd.DataFrame
    standardized: StandardizedMatrix
    loadings: pd.DataFrame
    elbow: pd.DataFrame
    model: TopicKMeans
    summary: pd.DataFrame
    profiles: pd.DataFrame
    scope: pd.DataFrame


def tag_categories(rules: Sequence[Tuple[str, str]]) -> List[str]:
    return list(dict.fromkeys(label for _, label in rules))


def default_configs(args) -> List[PipelineConfig]:
    sections = args.sections or SECTION_ALLOWLIST
    return [
        PipelineConfig(
            name="sections",
            category_col="section",
            categories=[s.lower() for s in sections],
            n_clusters=args.k_sections,
            n_factors=args.factors,
        ),
        PipelineConfig(
            name=f"{args.tag_section}_tags",
            category_col="tag",
            categories=tag_categories(TAG_REWRITE_RULES),
            n_clusters=args.k_tags,
            n_factors=args.factors,
            section_filter=args.tag_section.lower(),
            tag_rules=TAG_REWRITE_RULES,
        ),
    ]


# -------------------------
# Pipeline
# -------------------------
def category_pairs(events: pd.DataFrame, cfg: PipelineConfig) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Returns (events in scope for the report join, allowed (visitor, category) rows)."""
    scope = events
    if cfg.section_filter is not None:
        scope = events[(events["section"] == cfg.section_filter).fillna(False)].reset_index(drop=True)
    pairs = scope
    if cfg.tag_rules is not None:
        pairs = explode_tags(scope, cfg.tag_rules, out_col=cfg.category_col)
    return scope, filter_allowed(pairs, cfg.category_col, cfg.categories)


def run_pipeline(events: pd.DataFrame, cfg: PipelineConfig, n_restarts: int = N_RESTARTS,
                 seed: Optional[int] = RANDOM_STATE, max_iter: int = MAX_ITER, n_jobs: Optional[int] = None,
                 k_values=range(ELBOW_K_MIN, ELBOW_K_MAX + 1), zero_variance: str = "drop",
                 rotation: Optional[str] = "varimax", top_sources: int = TOP_SOURCES) -> Optional[PipelineResult]:
    scope, pairs = category_pairs(events, cfg)
    if pairs.empty:
        warnings.warn(f"[{cfg.name}] no events left after filtering; skipping.")
        return None

    matrix = build_user_category_matrix(pairs, cfg.categories, category_col=cfg.category_col)
    print(f"[{cfg.name}] Users: {matrix.shape[0]}, categories: {matrix.shape[1]}, events: {len(pairs)}")

    standardized = standardize_matrix(matrix, zero_variance=zero_variance)
    if standardized.dropped:
        print(f"[{cfg.name}] Dropped zero-variance categories: {standardized.dropped}")

    loadings = principal_axis_loadings(standardized, cfg.n_factors, rotation=rotation)
    elbow = elbow_curve(standardized, k_values, n_restarts=n_restarts, seed=seed, max_iter=max_iter)

    print(f"[{cfg.name}] Running k-means (k={cfg.n_clusters}, restarts={n_restarts}, seed={seed}) ...")
    model = TopicKMeans(cfg.n_clusters, n_restarts=n_restarts, seed=seed, max_iter=max_iter, n_jobs=n_jobs)
    model.fit(standardized)
    print(f"[{cfg.name}] Best WCSS: {model.inertia_:.2f} after {model.n_iter_} iterations")

    summary = summarize_segments(scope, model.assignment_, top_n=top_sources)
    profiles = cluster_profiles(standardized.frame, model.assignment_)
    return PipelineResult(
        config=cfg,
        matrix=matrix,
        standardized=standardized,
        loadings=loadings,
        elbow=elbow,
        model=model,
        summary=summary,
        profiles=profiles,
        scope=scope,
    )


def write_outputs(result: PipelineResult, outdir: str, seed: Optional[int] = RANDOM_STATE):
    cfg = result.config
    name = cfg.name
    assignment = result.model.assignment_

    user_clusters = result.matrix.join(assignment, how="inner")
    out_csv = os.path.join(outdir, f"{name}_user_clusters.csv")
    user_clusters.to_csv(out_csv)
    print(f"[{name}] User clusters saved to {out_csv}")

    traffic = traffic_source_breakdown(result.scope, assignment)
    networks = social_network_breakdown(result.scope, assignment)
    save_summary_tables(
        outdir, name,
        segment_summary=result.summary,
        traffic_sources=traffic,
        share_networks=networks,
        cluster_profiles=result.profiles,
        cluster_centers=result.model.centers_frame(),
        loadings=result.loadings,
        elbow=result.elbow.set_index("k"),
    )

    save_loadings_heatmap(result.loadings, os.path.join(outdir, f"{name}_loadings.png"),
                          title=f"Factor loadings ({name})")
    save_elbow_plot(result.elbow, os.path.join(outdir, f"{name}_elbow.png"), chosen_k=cfg.n_clusters,
                    title=f"Elbow method ({name})")
    if result.standardized.frame.shape[1] >= 2:
        save_2d_plot(result.standardized.frame.to_numpy(), result.model.labels_,
                     os.path.join(outdir, f"{name}_clusters_2d.png"), seed=seed)
    save_segment_bars(result.summary, os.path.join(outdir, f"{name}_segments.png"), title=f"Segments ({name})")
    if not traffic.empty:
        save_traffic_source_plot(traffic, os.path.join(outdir, f"{name}_traffic_sources.png"))

    commentary = commentary_lines(f"Reader segments: {name}", result.summary, result.profiles)
    commentary_path = os.path.join(outdir, f"{name}_commentary.txt")
    write_commentary(commentary_path, commentary)
    print(f"[{name}] Report written to {outdir}")


# -------------------------
# Args
# -------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Segment website visitors by topic views (factor loadings + k-means).")
    p.add_argument("--csv", help="Path to the visit-event CSV.")
    p.add_argument("--demo", action="store_true", help="Use simulated events instead of --csv.")
    p.add_argument("--demo-visitors", type=int, default=600, help="Visitors to simulate with --demo.")
    p.add_argument("--outdir", default=OUTDIR, help="Output directory.")
    p.add_argument("--sections", nargs="+", default=None, help="Section allow-list (default: built-in list).")
    p.add_argument("--tag-section", default=TAG_SECTION, help="Section whose article tags feed the second run.")
    p.add_argument("--k-sections", type=int, default=SECTION_K, help="Clusters for the section run.")
    p.add_argument("--k-tags", type=int, default=TAG_K, help="Clusters for the tag run.")
    p.add_argument("--factors", type=int, default=N_FACTORS, help="Factors for the loadings heatmap.")
    p.add_argument("--rotation", choices=["varimax", "none"], default="varimax", help="Factor rotation.")
    p.add_argument("--restarts", type=int, default=N_RESTARTS, help="K-means random restarts.")
    p.add_argument("--seed", type=int, default=RANDOM_STATE, help="Seed for restarts (and --demo data).")
    p.add_argument("--max-iter", type=int, default=MAX_ITER, help="K-means iteration cap per restart.")
    p.add_argument("--n-jobs", type=int, default=None, help="Parallel restarts (joblib threads).")
    p.add_argument("--k-min", type=int, default=ELBOW_K_MIN, help="Smallest k on the elbow curve.")
    p.add_argument("--k-max", type=int, default=ELBOW_K_MAX, help="Largest k on the elbow curve.")
    p.add_argument("--zero-variance", choices=["drop", "raise"], default="drop",
                   help="Zero-variance columns: drop with a warning, or fail.")
    args = p.parse_args(argv)
    if not args.demo and not args.csv:
        p.error("one of --csv or --demo is required")
    if args.k_min < 1 or args.k_max < args.k_min:
        p.error("--k-min must be >= 1 and <= --k-max")
    return args


# -------------------------
# Main
# -------------------------
def main(argv=None):
    args = parse_args(argv)
    os.makedirs(args.outdir, exist_ok=True)

    if args.demo:
        print(f"Simulating {args.demo_visitors} visitors (seed={args.seed}) ...")
        events = clean_events(simulate_visit_events(args.demo_visitors, seed=args.seed))
    else:
        print(f"Reading events from {args.csv} ...")
        events = read_visit_events(args.csv)
    print(f"Events: {len(events)}, visitors: {events['visitor_id'].nunique()}")

    rotation = None if args.rotation == "none" else args.rotation
    results = []
    for cfg in default_configs(args):
        result = run_pipeline(
            events, cfg,
            n_restarts=args.restarts,
            seed=args.seed,
            max_iter=args.max_iter,
            n_jobs=args.n_jobs,
            k_values=range(args.k_min, args.k_max + 1),
            zero_variance=args.zero_variance,
            rotation=rotation,
        )
        if result is None:
            continue
        write_outputs(result, args.outdir, seed=args.seed)
        results.append(result)

    print("Done.")
    return results


if __name__ == "__main__":
    main()
