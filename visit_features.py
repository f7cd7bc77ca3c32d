#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
visit_features.py

Visit events -> user x category count matrix -> standardized matrix.

- read_visit_events: CSV reader, renames source columns to canonical names.
- filter_allowed: keeps rows whose category is in the allow-list (others dropped silently).
- explode_tags: space-delimited sub-tags rewritten through (pattern, label) rules.
- build_user_category_matrix: dense counts, zero-filled, one column per allowed category.
- standardize_matrix: z-score with population std (ddof=0); zero-variance policy drop|raise.
"""
import re
import warnings
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from sklearn.preprocessing import StandardScaler

from segmentation_errors import DegenerateColumnError, InsufficientDataError

# canonical name -> column in the source CSV
EVENT_COLUMNS = {
    "visitor_id": "visitor_id",
    "section": "section",
    "tags": "tags",
    "social_action": "social_action",
    "social_network": "social_network",
    "traffic_source": "traffic_source",
    "session_duration": "session_duration",
}
USER_COL = "visitor_id"
ZERO_VARIANCE_POLICIES = ("drop", "raise")


# -------------------------
# Loading + filtering
# -------------------------
def read_visit_events(path: str, columns: Dict[str, str] = EVENT_COLUMNS) -> pd.DataFrame:
    source_cols = list(columns.values())
    header = pd.read_csv(path, nrows=0).columns
    missing = [c for c in source_cols if c not in header]
    if missing:
        raise KeyError(f"Missing required column(s) in {path}: {missing}")

    dtype_map = {columns[c]: "string" for c in ("visitor_id", "section", "tags", "social_action",
                                                 "social_network", "traffic_source")}
    df = pd.read_csv(path, usecols=source_cols, dtype=dtype_map)
    df = df.rename(columns={v: k for k, v in columns.items()})
    return clean_events(df)


def clean_events(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    for c in ("visitor_id", "section", "tags", "social_action", "social_network", "traffic_source"):
        if c in df.columns:
            df[c] = df[c].astype("string").str.strip()
    df["section"] = df["section"].str.lower()
    df["session_duration"] = pd.to_numeric(df["session_duration"], errors="coerce")
    # rows without a visitor cannot be aggregated
    return df.dropna(subset=["visitor_id"]).reset_index(drop=True)


def filter_allowed(df: pd.DataFrame, category_col: str, allowed: Iterable[str]) -> pd.DataFrame:
    allowed = list(dict.fromkeys(allowed))
    keep = df[category_col].notna() & df[category_col].isin(allowed)
    return df[keep].reset_index(drop=True)


# -------------------------
# Tag normalization
# -------------------------
def compile_rules(rules: Sequence[Tuple[str, str]]) -> List[Tuple["re.Pattern", str]]:
    return [(re.compile(pattern, flags=re.IGNORECASE), label) for pattern, label in rules]


def canonical_tag(tag: str, compiled) -> Optional[str]:
    for pattern, label in compiled:
        if pattern.search(tag):
            return label
    return None


def explode_tags(df: pd.DataFrame, rules: Sequence[Tuple[str, str]], tags_col: str = "tags",
                 out_col: str = "tag") -> pd.DataFrame:
    """
    One row per (event, canonical tag). First matching rule wins; sub-tags that match
    no rule are dropped; a canonical tag counts once per event.
    """
    compiled = compile_rules(rules)
    sub = df[df[tags_col].notna()].copy()
    sub["_event"] = sub.index
    sub["_raw_tag"] = sub[tags_col].str.split()
    sub = sub.explode("_raw_tag")
    sub = sub[sub["_raw_tag"].notna() & (sub["_raw_tag"] != "")]
    sub[out_col] = [canonical_tag(t, compiled) for t in sub["_raw_tag"].astype(str)]
    sub = sub[sub[out_col].notna()]
    sub = sub.drop_duplicates(subset=["_event", out_col])
    return sub.drop(columns=["_event", "_raw_tag"]).reset_index(drop=True)


# -------------------------
# Aggregation
# -------------------------
def build_user_category_matrix(pairs: pd.DataFrame, categories: Iterable[str],
                               user_col: str = USER_COL, category_col: str = "section") -> pd.DataFrame:
    """
    Dense user x category counts. Every allowed category gets a column even if never
    observed; absent (user, category) pairs are 0.
    """
    categories = list(dict.fromkeys(categories))
    sub = filter_allowed(pairs[[user_col, category_col]].dropna(), category_col, categories)
    if sub.empty:
        matrix = pd.DataFrame(0, index=pd.Index([], name=user_col), columns=categories, dtype="int64")
    else:
        matrix = (
            sub.assign(n=1)
               .pivot_table(index=user_col, columns=category_col, values="n",
                            aggfunc="sum", fill_value=0)
               .reindex(columns=categories, fill_value=0)
               .astype("int64")
        )
    matrix.columns = pd.Index(categories, name=category_col)
    matrix.index.name = user_col
    return matrix


# -------------------------
# Standardization
# -------------------------
@dataclass
class StandardizedMatrix:
    frame: pd.DataFrame
    mean: pd.Series
    scale: pd.Series
    dropped: List[str] = field(default_factory=list)

    @property
    def columns(self) -> pd.Index:
        return self.frame.columns

    @property
    def index(self) -> pd.Index:
        return self.frame.index

    def inverse_transform(self) -> pd.DataFrame:
        return self.frame * self.scale + self.mean


def zero_variance_columns(matrix: pd.DataFrame) -> List[str]:
    std = matrix.std(ddof=0)
    return std.index[np.isclose(std.to_numpy(dtype="float64"), 0.0)].tolist()


def standardize_matrix(matrix: pd.DataFrame, zero_variance: str = "drop") -> StandardizedMatrix:
    if zero_variance not in ZERO_VARIANCE_POLICIES:
        raise ValueError(f"zero_variance must be one of {ZERO_VARIANCE_POLICIES}, got {zero_variance!r}")
    if matrix.shape[0] == 0:
        raise InsufficientDataError("Cannot standardize a matrix with no rows.")

    flat = zero_variance_columns(matrix)
    if flat and (zero_variance == "raise" or len(flat) == matrix.shape[1]):
        raise DegenerateColumnError(flat)
    if flat:
        warnings.warn(f"Dropping {len(flat)} zero-variance column(s) before scaling: {flat}")

    kept = matrix.drop(columns=flat)
    scaler = StandardScaler()  # ddof=0
    values = scaler.fit_transform(kept.to_numpy(dtype="float64"))
    frame = pd.DataFrame(values, index=kept.index, columns=kept.columns)
    return StandardizedMatrix(
        frame=frame,
        mean=pd.Series(scaler.mean_, index=kept.columns),
        scale=pd.Series(scaler.scale_, index=kept.columns),
        dropped=flat,
    )
