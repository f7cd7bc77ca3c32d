#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
segment_report.py

Per-cluster summaries joined back to the raw events, plus the report charts.
Everything here is read-only over events / assignment; plots are written with
matplotlib (Agg-safe: savefig + close, no show).
"""
import os
from typing import List, Optional

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import seaborn as sns

from sklearn.decomposition import PCA

USER_COL = "visitor_id"
SHARE_ACTION = "share"


# -------------------------
# Summaries
# -------------------------
def attach_clusters(events: pd.DataFrame, assignment: pd.Series, user_col: str = USER_COL) -> pd.DataFrame:
    """Inner join: events of visitors without a cluster label are ignored."""
    labels = assignment.rename("cluster")
    labels.index = labels.index.astype(str)
    joined = events.assign(_uid=events[user_col].astype(str))
    joined = joined.merge(labels, left_on="_uid", right_index=True, how="inner")
    return joined.drop(columns=["_uid"])


def _top_sources(s: pd.Series, top_n: int) -> str:
    shares = s.value_counts(normalize=True).head(top_n)
    return ", ".join(f"{src} ({pct:.0%})" for src, pct in shares.items())


def summarize_segments(events: pd.DataFrame, assignment: pd.Series, share_action: str = SHARE_ACTION,
                       top_n: int = 3, user_col: str = USER_COL) -> pd.DataFrame:
    joined = attach_clusters(events, assignment, user_col=user_col)
    users = assignment.value_counts().sort_index()
    grp = joined.groupby("cluster")

    summary = pd.DataFrame({
        "users": users,
        "size_share": users / users.sum(),
        "events": grp.size(),
        "share_rate": grp["social_action"].apply(lambda s: float((s == share_action).fillna(False).mean())),
        "mean_session_duration": grp["session_duration"].mean(),
        "top_traffic_sources": grp["traffic_source"].apply(lambda s: _top_sources(s.dropna(), top_n)),
    })
    summary.index.name = "cluster"
    summary["events"] = summary["events"].fillna(0).astype(int)
    return summary


def traffic_source_breakdown(events: pd.DataFrame, assignment: pd.Series, user_col: str = USER_COL) -> pd.DataFrame:
    joined = attach_clusters(events, assignment, user_col=user_col)
    return pd.crosstab(joined["cluster"], joined["traffic_source"], normalize="index")


def social_network_breakdown(events: pd.DataFrame, assignment: pd.Series, share_action: str = SHARE_ACTION,
                             user_col: str = USER_COL) -> pd.DataFrame:
    """Share events per network, per cluster (counts)."""
    joined = attach_clusters(events, assignment, user_col=user_col)
    shares = joined[(joined["social_action"] == share_action).fillna(False)]
    if shares.empty:
        return pd.DataFrame(index=pd.Index([], name="cluster"))
    return pd.crosstab(shares["cluster"], shares["social_network"])


def cluster_profiles(standardized_frame: pd.DataFrame, assignment: pd.Series) -> pd.DataFrame:
    """Mean standardized value per category per cluster."""
    aligned = assignment.reindex(standardized_frame.index)
    return standardized_frame.groupby(aligned.rename("cluster")).mean()


def commentary_lines(title: str, summary: pd.DataFrame, profiles: pd.DataFrame, top_k: int = 3) -> List[str]:
    lines = [title, "=" * len(title), ""]
    for cl, row in summary.iterrows():
        lines.append(
            f"Segment {cl}: {int(row['users'])} visitors ({row['size_share']:.1%} of audience), "
            f"share rate {row['share_rate']:.1%}, mean session {row['mean_session_duration']:.0f}s."
        )
        if cl in profiles.index:
            top = profiles.loc[cl].sort_values(ascending=False).head(top_k)
            over = [f"{c} ({v:+.2f} sd)" for c, v in top.items() if v > 0]
            if over:
                lines.append(f"  over-indexes on: {', '.join(over)}")
        if row["top_traffic_sources"]:
            lines.append(f"  arrives via: {row['top_traffic_sources']}")
        lines.append("")
    return lines


def write_commentary(path: str, lines: List[str]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines) + "\n")


# -------------------------
# Plots
# -------------------------
def save_elbow_plot(curve: pd.DataFrame, outpath: str, chosen_k: Optional[int] = None, title: str = "Elbow method"):
    plt.figure(figsize=(8, 4))
    plt.plot(curve["k"], curve["wcss"], marker="o")
    if chosen_k is not None:
        plt.axvline(chosen_k, color="gray", linestyle="--", label=f"k={chosen_k}")
        plt.legend()
    plt.title(title)
    plt.xlabel("k")
    plt.ylabel("Within-cluster sum of squares")
    plt.tight_layout()
    plt.savefig(outpath, dpi=150)
    plt.close()


def save_loadings_heatmap(loadings: pd.DataFrame, outpath: str, title: str = "Factor loadings"):
    plt.figure(figsize=(1.2 * loadings.shape[1] + 4, 0.4 * loadings.shape[0] + 2))
    sns.heatmap(loadings, annot=True, fmt=".2f", cmap="RdBu_r", center=0, vmin=-1, vmax=1,
                annot_kws={"fontsize": 7})
    plt.title(title)
    plt.yticks(fontsize=8)
    plt.tight_layout()
    plt.savefig(outpath, dpi=150)
    plt.close()


def save_2d_plot(X_dense: np.ndarray, labels: np.ndarray, outpath: str, seed: Optional[int] = None):
    """PCA projection of the standardized matrix coloured by cluster. Needs >= 2 columns."""
    pca2 = PCA(n_components=2, random_state=seed)
    X2 = pca2.fit_transform(X_dense)
    explained_var = pca2.explained_variance_ratio_.sum()
    plt.figure(figsize=(8, 6))
    sns.scatterplot(x=X2[:, 0], y=X2[:, 1], hue=labels, palette="tab10", s=18, linewidth=0, alpha=0.8)
    plt.title(f"Clusters (PCA 2D) – explained var={explained_var:.2f}")
    plt.xlabel("PC1"); plt.ylabel("PC2")
    plt.legend(title="cluster", bbox_to_anchor=(1.05, 1), loc="upper left")
    plt.tight_layout()
    plt.savefig(outpath, dpi=150)
    plt.close()


def save_segment_bars(summary: pd.DataFrame, outpath: str, title: str = "Segments"):
    fig, axes = plt.subplots(1, 3, figsize=(15, 4))
    panels = [
        ("size_share", "Relative segment size", "{:.0%}"),
        ("share_rate", "Share rate", "{:.1%}"),
        ("mean_session_duration", "Mean session duration (s)", "{:.0f}"),
    ]
    for ax, (col, label, fmt) in zip(axes, panels):
        values = summary[col].fillna(0)
        sns.barplot(x=values.index.astype(str), y=values.values, ax=ax, color=sns.color_palette("deep")[0])
        ax.set_title(label)
        ax.set_xlabel("cluster")
        for i, v in enumerate(values.values):
            ax.text(i, v, fmt.format(v), ha="center", va="bottom", fontsize=8)
    fig.suptitle(title)
    plt.tight_layout()
    plt.savefig(outpath, dpi=150)
    plt.close(fig)


def save_traffic_source_plot(breakdown: pd.DataFrame, outpath: str, title: str = "Traffic sources by segment"):
    ax = breakdown.plot(kind="bar", stacked=True, figsize=(9, 5), colormap="tab20")
    ax.set_title(title)
    ax.set_xlabel("cluster")
    ax.set_ylabel("share of events")
    ax.legend(title="source", bbox_to_anchor=(1.02, 1), loc="upper left")
    plt.tight_layout()
    plt.savefig(outpath, dpi=150)
    plt.close()


def save_summary_tables(outdir: str, prefix: str, **tables: pd.DataFrame) -> List[str]:
    paths = []
    for name, table in tables.items():
        path = os.path.join(outdir, f"{prefix}_{name}.csv")
        table.to_csv(path)
        paths.append(path)
    return paths
