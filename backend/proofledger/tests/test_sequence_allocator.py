from concurrent.futures import ThreadPoolExecutor

import pytest

from proofledger.errors import ValidationError
from proofledger.services import proof_registry
from proofledger.services.sequence_allocator import (
    SequenceAllocator,
    counter_path,
    current_sequence_number,
    format_proof_ids,
)


def test_format_proof_ids():
    assert format_proof_ids(3, 1) == ("proof#3", "proof-3")
    assert format_proof_ids(3, 2) == ("proof#3-2", "proof-3-2")


def test_first_reservation_on_empty_channel(store):
    reservation = SequenceAllocator(store).reserve("0xABC")
    assert reservation.as_response() == {
        "sequenceNumber": 1,
        "subNumber": 1,
        "proofId": "proof#1",
        "storageProofId": "proof-1",
    }
    assert store.get(counter_path("0xabc", 1))["subNumber"] == 1


def test_reservation_after_two_verified_and_existing_submissions(store):
    proof_registry.put_proof(store, "c1", "verified", {"sequenceNumber": 1, "subNumber": 1}, key="proof-1")
    proof_registry.put_proof(store, "c1", "verified", {"sequenceNumber": 2, "subNumber": 1}, key="proof-2")
    proof_registry.put_proof(store, "c1", "submitted", {"sequenceNumber": 3, "subNumber": 1}, key="proof-3")
    proof_registry.put_proof(store, "c1", "submitted", {"sequenceNumber": 3, "subNumber": 2}, key="proof-3-2")
    store.set(counter_path("c1", 3), {"subNumber": 2})

    reservation = SequenceAllocator(store).reserve("c1")

    assert (reservation.sequence_number, reservation.sub_number) == (3, 3)
    assert reservation.proof_id == "proof#3-3"
    assert reservation.storage_proof_id == "proof-3-3"
    assert store.get(counter_path("c1", 3))["subNumber"] == 3


def test_sub_numbers_strictly_increase(store):
    allocator = SequenceAllocator(store)
    subs = [allocator.reserve("c1").sub_number for _ in range(5)]
    assert subs == [1, 2, 3, 4, 5]


def test_counter_lagging_behind_submissions_heals(store):
    proof_registry.put_proof(store, "c1", "submitted", {"sequenceNumber": 1, "subNumber": 4}, key="proof-1-4")
    store.set(counter_path("c1", 1), {"subNumber": 1})
    assert SequenceAllocator(store).reserve("c1").sub_number == 5


def test_legacy_numeric_counter_is_read(store):
    store.set(counter_path("c1", 1), 2)
    assert SequenceAllocator(store).reserve("c1").sub_number == 3


def test_concurrent_reservations_are_unique(store):
    allocator = SequenceAllocator(store)
    with ThreadPoolExecutor(max_workers=8) as pool:
        reservations = list(pool.map(lambda _: allocator.reserve("c1"), range(16)))
    subs = sorted(r.sub_number for r in reservations)
    assert subs == list(range(1, 17))
    assert {r.sequence_number for r in reservations} == {1}


def test_sequence_advances_after_verification(store):
    assert current_sequence_number(store, "c1") == 1
    proof_registry.put_proof(store, "c1", "verified", {"sequenceNumber": 1}, key="proof-1")
    assert current_sequence_number(store, "c1") == 2
    assert SequenceAllocator(store).reserve("c1").sequence_number == 2


def test_was_issued_tracks_counter(store):
    allocator = SequenceAllocator(store)
    allocator.reserve("c1")
    allocator.reserve("c1")
    assert allocator.was_issued("c1", 1, 1)
    assert allocator.was_issued("c1", 1, 2)
    assert not allocator.was_issued("c1", 1, 3)
    assert not allocator.was_issued("c1", 2, 1)
    assert not allocator.was_issued("c1", 0, 1)


def test_reserve_requires_channel(store):
    with pytest.raises(ValidationError):
        SequenceAllocator(store).reserve("")


def test_reservation_with_one_verified_and_one_pending_submission(store):
    proof_registry.put_proof(store, "c1", "verified", {"sequenceNumber": 1, "subNumber": 1}, key="proof-1")
    proof_registry.put_proof(store, "c1", "submitted", {"sequenceNumber": 2, "subNumber": 1}, key="proof-2")

    reservation = SequenceAllocator(store).reserve("c1")

    assert (reservation.sequence_number, reservation.sub_number) == (2, 2)
    assert (reservation.proof_id, reservation.storage_proof_id) == ("proof#2-2", "proof-2-2")
