import numpy as np
import pandas as pd
import pytest

from topic_clustering import (
    DegenerateColumnError,
    InsufficientDataError,
    InsufficientDimensionalityError,
    RestartResult,
    TopicKMeans,
    _reseed_index,
    best_restart,
    elbow_curve,
    lloyd_single,
    principal_axis_loadings,
    varimax,
)
from visit_features import standardize_matrix


def blobs(seed=0, n=40):
    rng = np.random.default_rng(seed)
    centers = np.array([[0.0, 0.0, 0.0], [6.0, 6.0, 0.0], [0.0, 6.0, 6.0], [6.0, 0.0, 6.0]])
    X = np.vstack([c + rng.normal(scale=0.8, size=(n, 3)) for c in centers])
    return pd.DataFrame(X, columns=["a", "b", "c"])


def two_factor_data(seed=1, n=300):
    rng = np.random.default_rng(seed)
    f1, f2 = rng.normal(size=(2, n))
    cols = {}
    for name in ("a", "b", "c"):
        cols[name] = f1 + 0.3 * rng.normal(size=n)
    for name in ("d", "e", "f"):
        cols[name] = f2 + 0.3 * rng.normal(size=n)
    return standardize_matrix(pd.DataFrame(cols))


# -------------------------
# K-means
# -------------------------
def test_toy_example_separates_dominant_axis(toy_counts):
    std = standardize_matrix(toy_counts)
    model = TopicKMeans(2, n_restarts=5, seed=0).fit(std)

    labels = model.assignment_
    assert labels["user1"] == labels["user2"]
    assert labels["user3"] == labels["user4"]
    assert labels["user1"] != labels["user3"]
    assert model.cluster_centers_.shape == (2, 2)


@pytest.mark.parametrize("k", [1, 2, 3, 5])
@pytest.mark.parametrize("restarts", [1, 4])
def test_never_more_than_k_labels(k, restarts):
    X = blobs()
    model = TopicKMeans(k, n_restarts=restarts, seed=11).fit(X)
    used = np.unique(model.labels_)
    assert len(used) <= k
    assert used.min() >= 0 and used.max() < k
    assert not np.isnan(model.cluster_centers_).any()


def test_more_restarts_never_worse():
    X = blobs(seed=5)
    inertias = [TopicKMeans(4, n_restarts=r, seed=3).fit(X).inertia_ for r in range(1, 9)]
    assert all(later <= earlier for earlier, later in zip(inertias, inertias[1:]))


def test_restarts_are_a_stable_prefix():
    X = blobs(seed=2)
    short = TopicKMeans(3, n_restarts=3, seed=9).fit(X)
    long = TopicKMeans(3, n_restarts=10, seed=9).fit(X)
    assert long.restart_inertias_[:3] == short.restart_inertias_


def test_same_seed_is_reproducible():
    X = blobs(seed=4)
    first = TopicKMeans(4, n_restarts=6, seed=21).fit(X)
    second = TopicKMeans(4, n_restarts=6, seed=21).fit(X)
    np.testing.assert_array_equal(first.labels_, second.labels_)
    np.testing.assert_array_equal(first.cluster_centers_, second.cluster_centers_)
    assert first.inertia_ == second.inertia_


def test_parallel_restarts_match_serial():
    X = blobs(seed=8)
    serial = TopicKMeans(4, n_restarts=6, seed=1).fit(X)
    threaded = TopicKMeans(4, n_restarts=6, seed=1, n_jobs=2).fit(X)
    np.testing.assert_array_equal(serial.labels_, threaded.labels_)
    np.testing.assert_array_equal(serial.cluster_centers_, threaded.cluster_centers_)
    assert serial.restart_inertias_ == threaded.restart_inertias_


def test_best_restart_is_minimum_and_inertia_matches_centers():
    X = blobs(seed=6)
    model = TopicKMeans(4, n_restarts=7, seed=2).fit(X)
    assert model.inertia_ == min(model.restart_inertias_)

    values = X.to_numpy()
    recomputed = ((values - model.cluster_centers_[model.labels_]) ** 2).sum()
    assert model.inertia_ == pytest.approx(recomputed)


def test_recovers_well_separated_blobs():
    X = blobs(seed=12, n=30)
    model = TopicKMeans(4, n_restarts=10, seed=0).fit(X)
    labels = model.labels_.reshape(4, 30)
    # each generated blob ends up in its own cluster
    assert all(len(set(row)) == 1 for row in labels)
    assert len({row[0] for row in labels}) == 4


def test_k_above_distinct_rows_raises():
    X = np.array([[0.0, 1.0], [0.0, 1.0], [1.0, 0.0]])
    with pytest.raises(InsufficientDataError):
        TopicKMeans(3, n_restarts=2, seed=0).fit(X)
    model = TopicKMeans(2, n_restarts=2, seed=0).fit(X)
    assert model.labels_[0] == model.labels_[1] != model.labels_[2]


def test_invalid_parameters():
    with pytest.raises(ValueError):
        TopicKMeans(0)
    with pytest.raises(ValueError):
        TopicKMeans(2, n_restarts=0)
    with pytest.raises(ValueError):
        TopicKMeans(2, max_iter=0)
    with pytest.raises(InsufficientDataError):
        TopicKMeans(1).fit(np.empty((0, 3)))


def test_reseed_prefers_rows_away_from_centers():
    X = np.array([[0.0], [1.0], [2.0]])
    centers = np.array([[0.0], [2.0]])
    rng = np.random.default_rng(0)
    assert all(_reseed_index(X, centers, rng) == 1 for _ in range(10))


def test_heavily_duplicated_rows_keep_defined_centers():
    X = np.repeat(np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [5.0, 5.0]]), [20, 1, 1, 20], axis=0)
    for seed in range(5):
        run = lloyd_single(X, 4, np.random.default_rng(seed))
        assert not np.isnan(run.centers).any()
        assert run.labels.max() < 4


TWO_GROUPS = np.array([[0.0, 0.0], [0.0, 1.0], [1.0, 0.0], [5.0, 5.0], [5.0, 6.0], [6.0, 5.0]])


def test_empty_cluster_is_reseeded_to_a_data_row():
    init = np.array([[0.0, 0.0], [5.0, 5.0], [100.0, 100.0]])
    # one pass: the far center gets no members and is moved onto a row
    run = lloyd_single(TWO_GROUPS, 3, np.random.default_rng(0), max_iter=1, init=init)
    assert run.n_reseeds == 1
    assert (TWO_GROUPS == run.centers[2]).all(axis=1).any()

    run = lloyd_single(TWO_GROUPS, 3, np.random.default_rng(0), init=init)
    assert run.n_reseeds >= 1
    assert not np.isnan(run.centers).any()
    assert run.labels.max() < 3
    assert np.abs(run.centers).max() <= 6.0


def test_init_shape_is_checked():
    with pytest.raises(ValueError, match="init"):
        lloyd_single(TWO_GROUPS, 2, np.random.default_rng(0), init=np.zeros((3, 2)))


def test_equal_inertia_keeps_earliest_restart():
    runs = [
        RestartResult(labels=np.array([0, 1]), centers=np.zeros((2, 1)), inertia=2.0, n_iter=1),
        RestartResult(labels=np.array([1, 0]), centers=np.zeros((2, 1)), inertia=1.0, n_iter=2),
        RestartResult(labels=np.array([0, 0]), centers=np.zeros((2, 1)), inertia=1.0, n_iter=3),
    ]
    assert best_restart(runs) is runs[1]
    assert best_restart(runs[2:] + runs[1:2]) is runs[2]
    with pytest.raises(ValueError):
        best_restart([])


def test_model_takes_first_of_tied_restarts():
    # corners of a unit square: left/right and top/bottom splits both give inertia 1.0
    X = np.array([[0.0, 0.0], [1.0, 0.0], [0.0, 1.0], [1.0, 1.0]])
    model = TopicKMeans(2, n_restarts=8, seed=4).fit(X)
    first = model.restart_inertias_.index(model.inertia_)
    child = np.random.SeedSequence(4).spawn(8)[first]
    expected = lloyd_single(X, 2, np.random.default_rng(child))
    np.testing.assert_array_equal(model.labels_, expected.labels)


def test_centers_frame_uses_feature_names(toy_counts):
    std = standardize_matrix(toy_counts)
    model = TopicKMeans(2, n_restarts=3, seed=0).fit(std)
    frame = model.centers_frame()
    assert list(frame.columns) == ["news", "sport"]
    assert frame.index.name == "cluster"


# -------------------------
# Elbow
# -------------------------
def test_elbow_k1_equals_total_sum_of_squares():
    std = standardize_matrix(blobs(seed=1))
    curve = elbow_curve(std, range(1, 5), n_restarts=10, seed=0)
    n, p = std.frame.shape
    assert curve.loc[curve["k"] == 1, "wcss"].item() == pytest.approx(n * p)
    assert list(curve["k"]) == [1, 2, 3, 4]
    assert curve["wcss"].is_monotonic_decreasing


def test_elbow_skips_k_above_distinct_rows(toy_counts):
    std = standardize_matrix(toy_counts)
    with pytest.warns(UserWarning, match="skipping k=5"):
        curve = elbow_curve(std, range(1, 7), n_restarts=2, seed=0)
    assert list(curve["k"]) == [1, 2, 3, 4]


# -------------------------
# Factor model
# -------------------------
def test_loadings_shape_and_range():
    std = two_factor_data()
    loadings = principal_axis_loadings(std, 2)
    assert loadings.shape == (6, 2)
    assert list(loadings.index) == list("abcdef")
    assert list(loadings.columns) == ["factor_1", "factor_2"]
    assert (loadings.abs() <= 1.0).all().all()


def test_varimax_separates_blocks():
    loadings = principal_axis_loadings(two_factor_data(), 2)
    dominant = loadings.abs().idxmax(axis=1)
    assert dominant["a"] == dominant["b"] == dominant["c"]
    assert dominant["d"] == dominant["e"] == dominant["f"]
    assert dominant["a"] != dominant["d"]
    assert (loadings.abs().max(axis=1) > 0.8).all()
    assert (loadings.abs().min(axis=1) < 0.3).all()


@pytest.mark.parametrize("normalize", [True, False])
def test_varimax_undoes_a_rotated_simple_structure(normalize):
    simple = np.array([[0.9, 0.0], [0.8, 0.0], [0.85, 0.0], [0.0, 0.9], [0.0, 0.8], [0.0, 0.85]])
    angle = np.deg2rad(30)
    turn = np.array([[np.cos(angle), -np.sin(angle)], [np.sin(angle), np.cos(angle)]])
    rotated = varimax(simple @ turn, normalize=normalize)
    np.testing.assert_allclose(np.sort(np.abs(rotated), axis=1), np.sort(simple, axis=1), atol=1e-4)


def test_rotation_preserves_communalities():
    std = two_factor_data(seed=4)
    rotated = principal_axis_loadings(std, 2, rotation="varimax")
    unrotated = principal_axis_loadings(std, 2, rotation=None)
    np.testing.assert_allclose((rotated ** 2).sum(axis=1), (unrotated ** 2).sum(axis=1), atol=1e-6)


def test_factors_are_sign_normalized():
    loadings = principal_axis_loadings(two_factor_data(seed=2), 2)
    for col in loadings.columns:
        peak = loadings[col].loc[loadings[col].abs().idxmax()]
        assert peak > 0


def test_factor_count_above_rank_fails(toy_counts):
    # sport = 5 - news, so the standardized data has rank 1
    std = standardize_matrix(toy_counts)
    with pytest.raises(InsufficientDimensionalityError):
        principal_axis_loadings(std, 2)
    single = principal_axis_loadings(std, 1)
    assert single.abs().to_numpy() == pytest.approx(1.0)
    assert np.sign(single.loc["news", "factor_1"]) == -np.sign(single.loc["sport", "factor_1"])


def test_factor_argument_checks():
    std = two_factor_data()
    with pytest.raises(ValueError):
        principal_axis_loadings(std, 0)
    with pytest.raises(ValueError, match="rotation"):
        principal_axis_loadings(std, 2, rotation="promax")
    with pytest.raises(DegenerateColumnError):
        principal_axis_loadings(pd.DataFrame({"a": [1.0, 2.0, 3.0], "b": [1.0, 1.0, 1.0]}), 1)
