#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
sample_data.py

Simulate a visit-event table with the columns the segmentation pipeline reads:
    visitor_id, section, tags, social_action, social_network, traffic_source, session_duration

Visitors are drawn from a few latent reader personas (section mix, sport tag mix,
share propensity, traffic source mix). A small share of rows carries sections that
are not on the allow-list, so the filtering step has something to drop.

Run:
  python sample_data.py --out data/visit_events.csv
"""
import argparse
import os

import numpy as np
import pandas as pd

SEED = 42

SECTIONS = ["news", "sport", "business", "culture", "lifestyle", "technology", "travel", "opinion"]
OFF_LIST_SECTIONS = ["", "unknown", "puzzles"]

SPORT_RAW_TAGS = {
    "football": ["football", "Football-EPL", "premier-league", "soccer", "football-transfers"],
    "tennis": ["tennis", "wimbledon", "tennis-atp"],
    "cricket": ["cricket", "cricket-ashes"],
    "formula_one": ["f1", "formula1", "formula-one"],
    "rugby": ["rugby", "rugby-union"],
    "golf": ["golf"],
    "cycling": ["cycling", "tour-de-france"],
    "athletics": ["athletics", "olympics"],
}
OTHER_RAW_TAGS = ["politics", "markets", "film", "recipes", "gadgets", "europe", "columnists", "misc", "live"]

SOCIAL_NETWORKS = ["facebook", "twitter", "linkedin", "whatsapp"]
TRAFFIC_SOURCES = ["direct", "search", "social", "newsletter", "referral"]

# section weights follow SECTIONS order; sport weights follow SPORT_RAW_TAGS order
PERSONAS = {
    "news_junkie": {
        "weight": 0.35,
        "sections": [0.45, 0.05, 0.15, 0.05, 0.05, 0.05, 0.05, 0.15],
        "sport": [0.4, 0.1, 0.1, 0.1, 0.1, 0.05, 0.05, 0.1],
        "share_p": 0.05,
        "traffic": [0.5, 0.2, 0.1, 0.15, 0.05],
        "duration": 140.0,
    },
    "football_fan": {
        "weight": 0.25,
        "sections": [0.08, 0.7, 0.04, 0.04, 0.04, 0.04, 0.03, 0.03],
        "sport": [0.8, 0.04, 0.04, 0.04, 0.04, 0.01, 0.01, 0.02],
        "share_p": 0.2,
        "traffic": [0.2, 0.2, 0.45, 0.05, 0.1],
        "duration": 90.0,
    },
    "motorsport_cycling": {
        "weight": 0.15,
        "sections": [0.05, 0.6, 0.05, 0.05, 0.05, 0.1, 0.05, 0.05],
        "sport": [0.05, 0.05, 0.05, 0.45, 0.05, 0.05, 0.25, 0.05],
        "share_p": 0.1,
        "traffic": [0.3, 0.4, 0.15, 0.05, 0.1],
        "duration": 110.0,
    },
    "leisure_reader": {
        "weight": 0.25,
        "sections": [0.05, 0.05, 0.05, 0.25, 0.3, 0.1, 0.15, 0.05],
        "sport": [0.1, 0.3, 0.1, 0.05, 0.05, 0.3, 0.05, 0.05],
        "share_p": 0.12,
        "traffic": [0.15, 0.45, 0.2, 0.1, 0.1],
        "duration": 180.0,
    },
}
OFF_LIST_RATE = 0.03
MEAN_EVENTS_PER_VISITOR = 9


# -------------------------
# Helpers
# -------------------------
def _sport_tags(rng: np.random.Generator, weights) -> str:
    keys = list(SPORT_RAW_TAGS)
    n_tags = int(rng.integers(1, 4))
    picked = rng.choice(len(keys), size=n_tags, p=weights)
    raw = [rng.choice(SPORT_RAW_TAGS[keys[i]]) for i in picked]
    if rng.random() < 0.3:
        raw.append(rng.choice(OTHER_RAW_TAGS))
    return " ".join(raw)


def _social(rng: np.random.Generator, share_p: float):
    u = rng.random()
    if u < share_p:
        return "share", rng.choice(SOCIAL_NETWORKS)
    if u < share_p + 0.08:
        return rng.choice(["like", "comment"]), rng.choice(SOCIAL_NETWORKS)
    return None, None


# -------------------------
# Simulation
# -------------------------
def simulate_visit_events(n_visitors: int = 600, seed: int = SEED) -> pd.DataFrame:
    """
    Returns:
        DataFrame with columns:
            visitor_id, section, tags, social_action, social_network, traffic_source,
            session_duration, persona
    """
    rng = np.random.default_rng(seed)
    names = list(PERSONAS)
    persona_p = np.array([PERSONAS[n]["weight"] for n in names])
    persona_p = persona_p / persona_p.sum()

    rows = []
    for v in range(n_visitors):
        visitor_id = f"v{v:05d}"
        persona = names[rng.choice(len(names), p=persona_p)]
        cfg = PERSONAS[persona]
        n_events = 1 + int(rng.poisson(MEAN_EVENTS_PER_VISITOR - 1))

        for _ in range(n_events):
            if rng.random() < OFF_LIST_RATE:
                section = rng.choice(OFF_LIST_SECTIONS)
            else:
                section = SECTIONS[rng.choice(len(SECTIONS), p=cfg["sections"])]
            if section == "sport":
                tags = _sport_tags(rng, cfg["sport"])
            else:
                tags = " ".join(rng.choice(OTHER_RAW_TAGS, size=int(rng.integers(1, 3))))
            action, network = _social(rng, cfg["share_p"])
            rows.append({
                "visitor_id": visitor_id,
                "section": section,
                "tags": tags,
                "social_action": action,
                "social_network": network,
                "traffic_source": TRAFFIC_SOURCES[rng.choice(len(TRAFFIC_SOURCES), p=cfg["traffic"])],
                "session_duration": round(float(rng.gamma(2.0, cfg["duration"] / 2.0)), 1),
                "persona": persona,
            })

    return pd.DataFrame(rows)


def main():
    p = argparse.ArgumentParser(description="Simulate a visit-event CSV for the segmentation pipeline.")
    p.add_argument("--out", default=os.path.join("data", "visit_events.csv"), help="Output CSV path.")
    p.add_argument("--visitors", type=int, default=600, help="Number of simulated visitors.")
    p.add_argument("--seed", type=int, default=SEED, help="Random seed.")
    args = p.parse_args()

    out_dir = os.path.dirname(args.out)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
    events = simulate_visit_events(args.visitors, seed=args.seed)
    events.to_csv(args.out, index=False)
    print(f"Saved: {args.out} ({len(events)} events, {events['visitor_id'].nunique()} visitors)")


if __name__ == "__main__":
    main()
