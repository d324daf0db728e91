import numpy as np
import pytest
pytest.importorskip("hist")
from hist import Hist
from charmpol.analysis import histograms
from charmpol.analysis.channels import ProcessingMode
from charmpol.analysis.config import ConfigurationError, DEFAULT_CONFIG, AxisSpec, axis_specs
from charmpol.analysis.kinematics import Evaluation


def _two_axis_hist():
    return histograms.SparseHist(
        "hTest",
        [("x", AxisSpec(10, 0.0, 1.0, "x")), ("c", AxisSpec(4, -1.0, 1.0, "c"))],
    )


def test_axis_layout_per_mode():
    assert histograms.axis_layout(ProcessingMode.DSTAR, "helicity") == [
        "inv_mass", "pt", "pz", "y", "cos_theta_star_helicity",
    ]
    assert histograms.axis_layout(ProcessingMode.DSTAR_WITH_ML, "beam") == [
        "inv_mass", "pt", "pz", "y", "cos_theta_star_beam", "ml_bkg", "ml_non_prompt",
    ]
    assert histograms.axis_layout(ProcessingMode.LC_TO_PKPI, "random") == [
        "inv_mass", "pt", "pz", "y", "cos_theta_star_random", "is_rotated_candidate",
    ]
    assert histograms.axis_layout(ProcessingMode.LC_TO_PKPI_WITH_ML, "production") == [
        "inv_mass", "pt", "pz", "y", "cos_theta_star_production",
        "ml_bkg", "ml_non_prompt", "is_rotated_candidate",
    ]


def test_enabled_reference_axes():
    enabled = histograms.enabled_reference_axes(
        {"helicity": True, "production": False, "beam": True, "random": False}
    )
    assert enabled == ["helicity", "beam"]


def test_no_enabled_output_is_fatal():
    with pytest.raises(ConfigurationError, match="No output"):
        histograms.enabled_reference_axes(
            {"helicity": False, "production": False, "beam": False, "random": False}
        )


def test_book_histograms_names_and_axes():
    registry = histograms.book_histograms(
        ProcessingMode.LC_TO_PKPI_WITH_ML, ["helicity", "random"], axis_specs(DEFAULT_CONFIG)
    )
    assert list(registry) == ["helicity", "random"]
    assert registry["helicity"].name == "hSparseCharmPolarisationHelicity"
    assert registry["random"].name == "hSparseCharmPolarisationRandom"
    assert registry["helicity"].ndim == 8
    assert registry["helicity"].axis_names[-1] == "is_rotated_candidate"


def test_book_histograms_missing_axis_is_fatal():
    specs = axis_specs(DEFAULT_CONFIG)
    del specs["pz"]
    with pytest.raises(ConfigurationError, match="pz"):
        histograms.book_histograms(ProcessingMode.DSTAR, ["helicity"], specs)


def test_sparse_fill_counts_and_drops_out_of_range():
    h = _two_axis_hist()
    h.fill(
        np.array([0.05, 0.06, 0.55, 1.5, -0.1, np.nan, 0.5]),
        np.array([0.9, 0.8, -0.9, 0.0, 0.0, 0.0, 1.0]),
    )

    # the upper edge is exclusive
    assert h.entries == 2 + 1
    assert h.n_dropped == 4
    assert len(h) == 2
    assert h.bins[(0, 3)] == 2
    assert h.bins[(5, 0)] == 1


def test_sparse_fill_scalar_broadcast():
    h = _two_axis_hist()
    h.fill(np.array([0.15, 0.25]), 0.1)
    assert h.entries == 2
    assert set(h.bins) == {(1, 2), (2, 2)}


def test_sparse_fill_bins_match_hist_axes():
    h = _two_axis_hist()
    x = np.linspace(0.0, 0.99, 37)
    c = np.linspace(-1.0, 0.99, 37)

    h.fill(x, c)

    expected = {}
    for key in zip(h.axes[0].index(x).tolist(), h.axes[1].index(c).tolist()):
        expected[key] = expected.get(key, 0) + 1
    assert h.bins == expected

    dense = h.project("x", "c")
    assert dense.values().sum() == 37


def test_sparse_fill_wrong_dimension():
    with pytest.raises(ValueError):
        _two_axis_hist().fill(np.array([0.1]))


def test_sparse_projection_is_dense_hist():
    h = _two_axis_hist()
    h.fill(np.array([0.05, 0.06, 0.55]), np.array([0.9, 0.8, -0.9]))

    proj = h.project("c")

    assert isinstance(proj, Hist)
    assert np.array_equal(proj.values(), [1.0, 0.0, 0.0, 2.0])
    proj2 = h.project("x", "c")
    assert proj2.values().shape == (10, 4)
    assert proj2.values().sum() == 3.0


def test_sparse_merge_and_copy():
    a = _two_axis_hist()
    b = _two_axis_hist()
    a.fill(np.array([0.05]), np.array([0.9]))
    b.fill(np.array([0.05, 0.95]), np.array([0.9, -0.9]))

    c = a.copy()
    c += b

    assert a.entries == 1
    assert c.entries == 3
    assert c.bins[(0, 3)] == 2


def test_sparse_merge_incompatible():
    a = _two_axis_hist()
    b = histograms.SparseHist("hOther", [("x", AxisSpec(5, 0.0, 1.0))])
    with pytest.raises(ValueError):
        a += b


def test_to_dict_export():
    h = _two_axis_hist()
    h.fill(np.array([0.05]), np.array([0.9]))
    out = h.to_dict()
    assert out["bin_indices"].tolist() == [[0, 3]]
    assert out["counts"].tolist() == [1]
    assert np.allclose(out["edges_c"], [-1.0, -0.5, 0.0, 0.5, 1.0])


def _evaluation(ml=(-1.0, -1.0, -1.0), is_rotated=0):
    return Evaluation(
        px_dau=np.array([0.5]), py_dau=np.array([0.1]), pz_dau=np.array([0.2]),
        mass_dau=np.array([0.938]),
        px=np.array([3.0]), py=np.array([4.0]), pz=np.array([1.0]),
        inv_mass=np.array([2.29]), inv_mass_for_sparse=np.array([2.29]),
        rapidity=np.array([0.1]),
        ml_scores=np.array([ml]),
        is_rotated=np.array([is_rotated]),
    )


def test_fill_histograms_field_order():
    specs = axis_specs(DEFAULT_CONFIG)
    specs["inv_mass"] = AxisSpec(100, 2.0, 2.5)
    registry = histograms.book_histograms(ProcessingMode.LC_TO_PKPI_WITH_ML, ["beam"], specs)

    histograms.fill_histograms(
        registry, ProcessingMode.LC_TO_PKPI_WITH_ML,
        _evaluation(ml=(0.15, 0.5, 0.75), is_rotated=1), {"beam": np.array([0.3])},
    )

    h = registry["beam"]
    assert h.entries == 1
    (key,) = h.bins
    values = [h.axes[i].centers[k] for i, k in enumerate(key)]
    assert values[0] == pytest.approx(2.29, abs=0.005)
    assert values[1] == pytest.approx(5.0, abs=1.0)   # pt
    assert values[2] == pytest.approx(1.0, abs=1.0)   # pz
    assert values[4] == pytest.approx(0.3, abs=0.06)  # cos
    assert values[5] == pytest.approx(0.15, abs=0.01)  # ML bkg
    assert values[6] == pytest.approx(0.75, abs=0.01)  # ML non-prompt
    assert values[7] == pytest.approx(1.0)            # rotated


def test_fill_histograms_ml_sentinel_out_of_range():
    specs = axis_specs(DEFAULT_CONFIG)
    specs["inv_mass"] = AxisSpec(100, 2.0, 2.5)
    registry = histograms.book_histograms(ProcessingMode.LC_TO_PKPI_WITH_ML, ["helicity"], specs)

    histograms.fill_histograms(
        registry, ProcessingMode.LC_TO_PKPI_WITH_ML, _evaluation(), {"helicity": np.array([0.3])}
    )

    assert registry["helicity"].entries == 0
    assert registry["helicity"].n_dropped == 1


def test_merge_registries():
    specs = axis_specs(DEFAULT_CONFIG)
    specs["inv_mass"] = AxisSpec(100, 2.0, 2.5)
    regs = []
    for _ in range(3):
        registry = histograms.book_histograms(ProcessingMode.LC_TO_PKPI, ["helicity"], specs)
        histograms.fill_histograms(
            registry, ProcessingMode.LC_TO_PKPI, _evaluation(), {"helicity": np.array([0.3])}
        )
        regs.append(registry)

    merged = histograms.merge_registries(regs)

    assert merged["helicity"].entries == 3
    # inputs untouched
    assert regs[0]["helicity"].entries == 1


def test_merge_registries_empty():
    with pytest.raises(ValueError):
        histograms.merge_registries([])
