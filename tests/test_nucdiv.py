import numpy as np
import pytest

from popbamstats.models import Population
from popbamstats.nucdiv import compute_nucdiv, pair_name

POPS = [
    Population(name="A", samples=(0, 1, 2, 3), mask=0x0F),
    Population(name="B", samples=(4, 5, 6, 7), mask=0xF0),
]


def test_pi_and_dxy_known_values() -> None:
    # site 1: one of four in A, none in B; site 2: fixed difference between A and B
    sites = [0b0000_0001, 0b0000_1111]
    cov = np.array([[4, 4], [4, 4]], dtype=np.int32)
    within, between = compute_nucdiv(sites, cov, [0b11, 0b11], POPS, [10, 10], [10], 10)

    # 2 * 1 * 3 / (4 * 3) = 0.5 over 10 aligned sites
    assert within["A"].values["Pi"] == pytest.approx(0.05)
    assert within["A"].num_snps == 1
    assert within["B"].values["Pi"] == pytest.approx(0.0)
    assert within["B"].num_snps == 0

    # (1*4 + 0*3) / 16 + (4*4 + 0*0) / 16 = 1.25 over 10 sites
    assert between["A-B"].values["Dxy"] == pytest.approx(0.125)
    assert between["A-B"].num_snps == 2
    assert between["A-B"].aligned_sites == 10


def test_sites_count_only_where_population_is_covered() -> None:
    sites = [0b0001_0001]
    cov = np.array([[4, 1]], dtype=np.int32)
    within, between = compute_nucdiv(sites, cov, [0b01], POPS, [5, 4], [4], 10, min_sites=0.4)

    assert within["A"].values["Pi"] == pytest.approx(0.5 / 5)
    assert within["B"].num_snps == 0
    assert between["A-B"].num_snps == 0
    assert between["A-B"].values["Dxy"] == pytest.approx(0.0)


def test_below_min_sites_is_na() -> None:
    sites = [0b0000_0011]
    cov = np.array([[4, 4]], dtype=np.int32)
    within, between = compute_nucdiv(sites, cov, [0b11], POPS, [40, 0], [0], 100, min_sites=0.5)

    assert within["A"].values["Pi"] is None
    assert within["A"].num_snps == 1
    assert within["B"].values["Pi"] is None
    assert between["A-B"].values["Dxy"] is None


def test_pair_naming_and_order() -> None:
    pops = POPS + [Population(name="C", samples=(8,), mask=1 << 8)]
    cov = np.zeros((0, 3), dtype=np.int32)
    _, between = compute_nucdiv([], cov, [], pops, [1, 1, 1], [1, 1, 1], 1)
    assert list(between) == [pair_name("A", "B"), pair_name("A", "C"), pair_name("B", "C")]
    assert all(r.values["Dxy"] == 0.0 for r in between.values())
