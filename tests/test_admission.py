from concurrent.futures import ThreadPoolExecutor

import pytest

from goldenpipe.admission import AdmissionController
from goldenpipe.errors import CapacityError


def test_acquire_until_limit():
    admission = AdmissionController(2)
    admission.acquire("a")
    admission.acquire("b")
    with pytest.raises(CapacityError) as exc_info:
        admission.acquire("c")
    assert exc_info.value.limit == 2
    assert exc_info.value.in_flight == 2


def test_acquire_same_name_is_idempotent():
    admission = AdmissionController(1)
    assert admission.acquire("a") is True
    assert admission.acquire("a") is False
    assert admission.in_flight == 1


def test_release_twice_frees_one_slot():
    admission = AdmissionController(2)
    admission.acquire("a")
    admission.acquire("b")
    assert admission.release("a") is True
    assert admission.release("a") is False
    assert admission.in_flight == 1
    assert not admission.holds("a")


def test_seed_counts_against_limit():
    admission = AdmissionController(2)
    admission.seed(["old-1", "old-2"])
    with pytest.raises(CapacityError):
        admission.acquire("new")


def test_concurrent_acquire_never_exceeds_limit():
    admission = AdmissionController(3)

    def attempt(i: int) -> bool:
        try:
            admission.acquire(f"img-{i}")
        except CapacityError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(attempt, range(20)))

    assert sum(results) == 3
    assert admission.in_flight == 3


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        AdmissionController(0)
