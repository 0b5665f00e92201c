from __future__ import annotations

import pandas as pd
import pytest

from aim_sample.errors import SamplingFailure
from aim_sample.sampler import (
    GrtsSampler,
    StratifiedRandomSampler,
    check_sample,
    get_sampler,
)
from conftest import make_records


def test_random_sampler_draws_planned_counts():
    records = make_records({2016: 300, 2018: 120})
    sizes = {2016: 30, 2018: 12}
    sample = StratifiedRandomSampler().draw(records, sizes, "year", seed=46290)

    assert sample["year"].value_counts().to_dict() == sizes
    assert sample.crs == records.crs
    check_sample(sample, records, sizes)


def test_random_sampler_is_reproducible():
    records = make_records({2016: 300})
    first = StratifiedRandomSampler().draw(records, {2016: 25}, "year", seed=7)
    again = StratifiedRandomSampler().draw(records, {2016: 25}, "year", seed=7)
    other = StratifiedRandomSampler().draw(records, {2016: 25}, "year", seed=8)
    assert first["PrimaryKey"].tolist() == again["PrimaryKey"].tolist()
    assert first["PrimaryKey"].tolist() != other["PrimaryKey"].tolist()


def test_random_sampler_refuses_oversized_stratum():
    records = make_records({2016: 10})
    with pytest.raises(SamplingFailure):
        StratifiedRandomSampler().draw(records, {2016: 11}, "year", seed=1)


def test_get_sampler():
    assert isinstance(get_sampler("grts"), GrtsSampler)
    assert isinstance(get_sampler("Random"), StratifiedRandomSampler)
    with pytest.raises(ValueError):
        get_sampler("systematic")


def test_grts_needs_projected_points():
    # Rejected before R is touched
    records = make_records({2016: 120}).to_crs("EPSG:4326")
    with pytest.raises(SamplingFailure):
        GrtsSampler().draw(records, {2016: 12}, "year", seed=1)


# ---------------------------------------------------------------------------
# check_sample
# ---------------------------------------------------------------------------

def test_check_sample_wrong_count():
    records = make_records({2016: 200})
    sample = records.head(19)
    with pytest.raises(SamplingFailure, match="expected 20"):
        check_sample(sample, records, {2016: 20})


def test_check_sample_foreign_identifier():
    population = make_records({2016: 200, 2017: 200})
    sample = population[population["year"] == 2017].head(20).copy()
    sample["year"] = 2016
    with pytest.raises(SamplingFailure, match="not in its population"):
        check_sample(sample, population[population["year"] == 2016], {2016: 20})


def test_check_sample_duplicates():
    records = make_records({2016: 200})
    sample = records.iloc[[0, 0, 1]]
    with pytest.raises(SamplingFailure, match="repeats"):
        check_sample(sample, records, {2016: 3})


def test_check_sample_unplanned_stratum():
    records = make_records({2016: 200, 2017: 50})
    sample = records.groupby("year").head(5)
    with pytest.raises(SamplingFailure, match="outside the plan"):
        check_sample(sample, records, {2016: 5})


def test_check_sample_rejects_unlabelled_rows():
    records = make_records({2016: 200})
    sample = records.head(21).copy()
    sample.iloc[20, sample.columns.get_loc("year")] = pd.NA
    with pytest.raises(SamplingFailure, match="without a 'year'"):
        check_sample(sample, records, {2016: 20})


# ---------------------------------------------------------------------------
# GrtsSampler
# ---------------------------------------------------------------------------

class RecordingGrts(GrtsSampler):
    """Stands in for the R call: returns the first ``n`` ids of every stratum."""

    def __init__(self):
        self.calls = []

    def _run_grts(self, frame, n_base, stratum_field, crs_wkt, seed):
        self.calls.append(
            {"frame": frame, "n_base": n_base, "stratum_field": stratum_field, "crs": crs_wkt, "seed": seed}
        )
        picked = [
            frame[frame[stratum_field] == label].head(n)
            for label, n in n_base.items()
        ]
        sites = pd.concat(picked, ignore_index=True)
        # spsurvey adds its own design columns next to the input ones
        sites["siteID"] = [f"Site-{i + 1:02d}" for i in range(len(sites))]
        return sites


def test_grts_maps_sites_back_to_records():
    records = make_records({2016: 150, 2018: 120})
    sizes = {2016: 15, 2018: 12}
    sampler = RecordingGrts()
    sample = sampler.draw(records, sizes, "year", seed=46290)

    call = sampler.calls[0]
    assert call["n_base"] == {"2016": 15, "2018": 12}
    assert set(call["frame"]["year"]) == {"2016", "2018"}
    assert list(call["frame"].columns) == ["PrimaryKey", "year", "x", "y"]
    assert call["seed"] == 46290
    assert call["stratum_field"] == "year"
    assert "ALBERS" in call["crs"].upper()

    assert sample.crs == records.crs
    assert sample["year"].value_counts().to_dict() == sizes
    check_sample(sample, records, sizes)


def test_grts_output_without_identifier_column():
    class NoIds(GrtsSampler):
        def _run_grts(self, frame, n_base, stratum_field, crs_wkt, seed):
            return frame[["x", "y"]].head(3)

    records = make_records({2016: 120})
    with pytest.raises(SamplingFailure, match="no 'PrimaryKey' column"):
        NoIds().draw(records, {2016: 3}, "year", seed=1)


def test_grts_draw_with_spsurvey():
    pytest.importorskip("rpy2.robjects")
    from rpy2.robjects.packages import isinstalled

    if not (isinstalled("spsurvey") and isinstalled("sf")):
        pytest.skip("R packages spsurvey and sf are not installed")

    records = make_records({2016: 150, 2018: 120})
    sizes = {2016: 15, 2018: 12}
    first = GrtsSampler().draw(records, sizes, "year", seed=46290)
    again = GrtsSampler().draw(records, sizes, "year", seed=46290)

    check_sample(first, records, sizes)
    assert sorted(first["PrimaryKey"]) == sorted(again["PrimaryKey"])
