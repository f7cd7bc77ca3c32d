import matplotlib

matplotlib.use("Agg")

import pandas as pd
import pytest

from sample_data import simulate_visit_events
from visit_features import clean_events


@pytest.fixture
def toy_counts():
    """4 users x 2 categories with an obvious split on the dominant axis."""
    return pd.DataFrame(
        [[5, 0], [4, 1], [0, 5], [1, 4]],
        index=pd.Index(["user1", "user2", "user3", "user4"], name="visitor_id"),
        columns=pd.Index(["news", "sport"], name="section"),
    )


@pytest.fixture
def toy_events():
    return clean_events(pd.DataFrame({
        "visitor_id": ["a", "a", "a", "b", "b", "c", "c", "c", None],
        "section": ["news", "News", "sport", "sport", "puzzles", "travel", None, "news", "news"],
        "tags": ["politics", "politics", "football tennis", "Football-EPL soccer", "x", "europe", "", "live", "live"],
        "social_action": ["share", None, "like", "share", None, None, None, "share", None],
        "social_network": ["twitter", None, "facebook", "whatsapp", None, None, None, "twitter", None],
        "traffic_source": ["direct", "search", "direct", "social", "social", "search", "search", "direct", "direct"],
        "session_duration": [100, 50, "30", 60, 10, 200, 20, "bad", 5],
    }))


@pytest.fixture(scope="session")
def demo_events():
    return clean_events(simulate_visit_events(250, seed=7))
