import pytest

from popbamstats.ld import (
    LDStatistic,
    compute_ld,
    compute_omega_max,
    compute_wall,
    compute_zns,
    derived_matrix,
    r2_matrix,
)
from popbamstats.models import Population
from popbamstats.utils import mask_from_indices


def _pop(n: int, name: str = "p", offset: int = 0) -> Population:
    idx = tuple(range(offset, offset + n))
    return Population(name=name, samples=idx, mask=mask_from_indices(idx))


def _site(*carriers: int) -> int:
    return mask_from_indices(carriers)


def test_derived_matrix_follows_population_members() -> None:
    pop = Population(name="p", samples=(1, 3), mask=0b1010)
    g = derived_matrix([_site(1), _site(0, 3)], pop)
    assert g.tolist() == [[1, 0], [0, 1]]


def test_r2_known_value() -> None:
    pop = _pop(10)
    sites = [_site(0, 1, 2), _site(1, 2, 3, 4)]
    r2 = r2_matrix(sites, pop)
    assert r2.shape == (2, 2)
    assert r2[0, 1] == pytest.approx(64 / 504)
    assert r2[0, 0] == 0.0

    res = compute_zns(sites, pop)
    assert res.num_snps == 2
    assert res.values["Zns"] == pytest.approx(64 / 504)


def test_zns_ignores_site_order_and_fixed_sites() -> None:
    pop = _pop(8)
    sites = [_site(0, 1), _site(0, 1, 2), _site(5, 6, 7), _site(*range(8))]
    a = compute_zns(sites, pop)
    b = compute_zns(list(reversed(sites)), pop)
    assert a.num_snps == 3
    assert a.values["Zns"] == pytest.approx(b.values["Zns"])


def test_zns_excludes_singletons_with_min_freq() -> None:
    pop = _pop(8)
    sites = [_site(0), _site(0, 1), _site(0, 1, 2)]
    assert compute_zns(sites, pop, min_freq=1).num_snps == 3
    assert compute_zns(sites, pop, min_freq=2).num_snps == 2


def test_zns_na_with_fewer_than_two_snps() -> None:
    res = compute_zns([_site(0, 1)], _pop(6))
    assert res.num_snps == 1
    assert res.values["Zns"] is None


def test_omega_max_two_linked_blocks() -> None:
    pop = _pop(10)
    a = _site(0, 1, 2)
    b = _site(5, 6, 7, 8)
    res = compute_omega_max([a, a, b, b], pop)
    assert res.num_snps == 4
    # best split separates the two perfectly linked pairs
    assert res.values["omax"] == pytest.approx(3.5)


def test_omega_max_without_valid_split_is_na() -> None:
    pop = _pop(10)
    res = compute_omega_max([_site(0, 1, 2), _site(1, 2, 3, 4)], pop)
    assert res.num_snps == 2
    assert res.values["omax"] is None


def test_wall_identical_sites() -> None:
    pop = _pop(6)
    res = compute_wall([_site(0, 1)] * 5, pop)
    assert res.num_snps == 5
    assert res.values["B"] == pytest.approx(1.0)
    assert res.values["Q"] == pytest.approx(0.8)


def test_wall_complementary_partitions_are_congruent() -> None:
    pop = _pop(4)
    res = compute_wall([_site(0, 1), _site(2, 3), _site(0, 2)], pop)
    assert res.num_snps == 3
    assert res.values["B"] == pytest.approx(0.5)
    assert res.values["Q"] == pytest.approx(1 / 3)


def test_compute_ld_per_population_and_min_snps() -> None:
    pops = [_pop(4, "A"), _pop(4, "B", offset=4)]
    sites = [_site(0, 1), _site(0, 1), _site(0, 5), _site(2, 4, 5)]

    out = compute_ld(LDStatistic.ZNS, sites, pops)
    assert set(out) == {"A", "B"}
    assert out["A"].num_snps == 4
    assert out["A"].values["Zns"] is not None
    assert out["B"].num_snps == 2

    masked = compute_ld(LDStatistic.ZNS, sites, pops, min_snps=3)
    assert masked["A"].values["Zns"] is not None
    assert masked["B"].values["Zns"] is None
    assert masked["B"].num_snps == 2


def test_statistic_labels() -> None:
    assert LDStatistic.ZNS.labels == ("Zns",)
    assert LDStatistic.OMEGA_MAX.labels == ("omax",)
    assert LDStatistic.WALL.labels == ("B", "Q")
    assert LDStatistic("omega_max") is LDStatistic.OMEGA_MAX


def test_omega_and_wall_na_with_one_polymorphic_site() -> None:
    pop = _pop(6)
    sites = [_site(0, 1), _site(*range(6))]
    omega = compute_omega_max(sites, pop)
    assert omega.num_snps == 1
    assert omega.values["omax"] is None

    wall = compute_wall(sites, pop)
    assert wall.num_snps == 1
    assert wall.values == {"B": None, "Q": None}


def test_omega_max_skips_splits_without_between_ld() -> None:
    pop = _pop(10)
    a = _site(0, 1, 2, 3, 4)
    c = _site(0, 5)
    r2 = r2_matrix([a, a, c], pop)
    assert r2[0, 2] == pytest.approx(0.0)
    assert r2[1, 2] == pytest.approx(0.0)

    res = compute_omega_max([a, a, c], pop)
    assert res.num_snps == 3
    assert res.values["omax"] is None
