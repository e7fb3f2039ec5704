import numpy as np
import pytest

from popbamstats.errmod import ETA, MAX_READS, build_coefficients, genotype_likelihoods, pack_read
from popbamstats.models import ReadObservation


@pytest.fixture(scope="module")
def coeffs():
    return build_coefficients(0.17)


@pytest.mark.parametrize("depcorr", [0.0, 0.17, 0.5, 1.0])
def test_fk_weights_non_increasing(depcorr: float) -> None:
    fk = build_coefficients(depcorr).fk
    assert fk[0] == pytest.approx(1.0)
    assert np.all(np.diff(fk) <= 0)
    assert np.all(fk >= ETA - 1e-12)


def test_fk_weights_decay_towards_eta(coeffs) -> None:
    assert coeffs.fk[-1] == pytest.approx(ETA, abs=1e-6)
    assert np.allclose(build_coefficients(0.0).fk, 1.0)


def test_depcorr_out_of_range() -> None:
    with pytest.raises(ValueError):
        build_coefficients(1.5)


def test_pack_read_orders_by_quality() -> None:
    assert pack_read(2, 30, 1) == 30 << 5 | 1 << 4 | 2
    assert pack_read(0, 200, 0) == 63 << 5
    assert pack_read(3, 10, 0) < pack_read(0, 11, 0)


def test_no_reads_gives_zero_costs(coeffs) -> None:
    q = genotype_likelihoods([], coeffs)
    assert q.shape == (4, 4)
    assert np.all(q == 0.0)


def test_unanimous_reads_favour_homozygote(coeffs) -> None:
    reads = [ReadObservation(sample=0, base=1, quality=30, strand=i % 2) for i in range(10)]
    q = genotype_likelihoods(reads, coeffs)

    assert np.allclose(q, q.T)
    assert np.all(q >= 0.0)
    assert q[1, 1] == pytest.approx(0.0)
    others = [q[j, k] for j in range(4) for k in range(j, 4) if (j, k) != (1, 1)]
    assert min(others) > 0.0
    # het {A,C} cost is the binomial penalty of seeing no A among 10 reads
    assert q[0, 1] == pytest.approx(10.0 / np.log(10.0) * 10 * np.log(2.0), rel=1e-6)


def test_mixed_reads_favour_heterozygote(coeffs) -> None:
    codes = [pack_read(0, 35, i % 2) for i in range(8)] + [pack_read(2, 35, i % 2) for i in range(8)]
    q = genotype_likelihoods(codes, coeffs)
    best = np.unravel_index(np.argmin(q), q.shape)
    assert set(best) == {0, 2}


def test_deep_column_is_downsampled_deterministically(coeffs) -> None:
    codes = [pack_read(3, 30, i % 2) for i in range(300)] + [pack_read(0, 30, 0)] * 5
    assert len(codes) > MAX_READS
    q1 = genotype_likelihoods(codes, coeffs, rng=np.random.default_rng(11))
    q2 = genotype_likelihoods(codes, coeffs, rng=np.random.default_rng(11))
    assert np.all(np.isfinite(q1))
    assert np.array_equal(q1, q2)
    assert np.argmin(np.diag(q1)) == 3
