from __future__ import annotations

import itertools
import random
from collections import defaultdict

import pytest

from escrow_mirror.domain.models import (
    JobAccepted,
    JobCompleted,
    JobCreated,
    JobRefunded,
    PaymentReleased,
    Settlement,
)
from escrow_mirror.errors import StorageError
from escrow_mirror.ingestion.ingester import merge_events
from escrow_mirror.ingestion.materializer import Materializer
from scripts.generate_events import generate_events
from tests.fakes import MemoryStore, addr, jid, txh

CLIENT = addr(0xC1)
PROVIDER = addr(0xB0)
J1 = jid(1)
J2 = jid(2)
RELEASE_AMOUNT = 5_000_000
REFUND_AMOUNT = 7_000_000
BASE_TS = 1_700_000_000


def _j1_lifecycle(start_block: int = 100) -> list:
    return [
        JobCreated(
            job_id=J1, block_number=start_block, log_index=0, tx_hash=txh(11),
            client=CLIENT, provider=PROVIDER, amount=RELEASE_AMOUNT, deadline=BASE_TS + 3600,
        ),
        JobAccepted(job_id=J1, block_number=start_block + 1, log_index=0, tx_hash=txh(12)),
        JobCompleted(job_id=J1, block_number=start_block + 2, log_index=0, tx_hash=txh(13)),
        PaymentReleased(
            job_id=J1, block_number=start_block + 3, log_index=0, tx_hash=txh(14),
            provider=PROVIDER, amount=RELEASE_AMOUNT,
        ),
    ]


def _j2_refund(start_block: int = 200) -> list:
    return [
        JobCreated(
            job_id=J2, block_number=start_block, log_index=0, tx_hash=txh(21),
            client=CLIENT, provider=PROVIDER, amount=REFUND_AMOUNT, deadline=BASE_TS + 10,
        ),
        JobRefunded(
            job_id=J2, block_number=start_block + 5, log_index=2, tx_hash=txh(22),
            client=CLIENT, amount=REFUND_AMOUNT,
        ),
    ]


def test_release_lifecycle_settles_job_and_credits_provider(memory_store: MemoryStore):
    result = Materializer(memory_store).apply(_j1_lifecycle())

    job = memory_store.jobs[J1]
    assert (job.accepted, job.completed, job.released) == (True, True, True)
    assert job.settlement is Settlement.RELEASED
    assert job.released_tx == txh(14)
    assert job.refunded_tx is None

    provider = memory_store.agent(PROVIDER)
    assert provider.volume_settled == RELEASE_AMOUNT
    assert provider.jobs_completed == 1
    assert provider.jobs_accepted == 1
    assert memory_store.agent(CLIENT).jobs_created == 1

    assert result["applied"] == 4
    assert result["skipped"] == 0
    assert result["checkpoint"] == 103
    assert memory_store.checkpoint == 103


def test_refund_settles_job_and_blocks_later_transitions(memory_store: MemoryStore):
    materializer = Materializer(memory_store)
    materializer.apply(_j2_refund())

    job = memory_store.jobs[J2]
    assert (job.accepted, job.completed, job.released) == (False, False, True)
    assert job.settlement is Settlement.REFUNDED
    assert job.refunded_tx == txh(22)
    assert memory_store.agent(CLIENT).jobs_refunded == 1

    before = memory_store.dump()
    late_accept = JobAccepted(job_id=J2, block_number=210, log_index=0, tx_hash=txh(23))
    result = materializer.apply([late_accept])

    assert result["applied"] == 0
    assert result["skipped"] == 1
    jobs, agents, checkpoint = memory_store.dump()
    assert (jobs, agents) == before[:2]
    assert checkpoint == 210


def test_release_after_refund_is_ignored(memory_store: MemoryStore):
    materializer = Materializer(memory_store)
    materializer.apply(_j2_refund())
    materializer.apply(
        [
            JobAccepted(job_id=J2, block_number=300, log_index=0, tx_hash=txh(31)),
            JobCompleted(job_id=J2, block_number=301, log_index=0, tx_hash=txh(32)),
            PaymentReleased(
                job_id=J2, block_number=302, log_index=0, tx_hash=txh(33),
                provider=PROVIDER, amount=REFUND_AMOUNT,
            ),
        ]
    )

    job = memory_store.jobs[J2]
    assert job.settlement is Settlement.REFUNDED
    assert not job.completed
    assert memory_store.agent(PROVIDER).volume_settled == 0


def test_refund_of_completed_job_is_ignored(memory_store: MemoryStore):
    events = _j1_lifecycle()[:3] + [
        JobRefunded(
            job_id=J1, block_number=110, log_index=0, tx_hash=txh(15),
            client=CLIENT, amount=RELEASE_AMOUNT,
        )
    ]
    Materializer(memory_store).apply(events)

    job = memory_store.jobs[J1]
    assert job.completed and not job.released
    assert memory_store.agent(CLIENT).jobs_refunded == 0


def test_applying_the_same_batch_twice_is_idempotent(memory_store: MemoryStore):
    batch = _j1_lifecycle() + _j2_refund()
    materializer = Materializer(memory_store)

    materializer.apply(batch)
    once = memory_store.dump()
    second = materializer.apply(batch)

    assert memory_store.dump() == once
    assert second["applied"] == 0
    assert second["skipped"] == len(batch)


def test_duplicate_created_does_not_overwrite_job(memory_store: MemoryStore):
    created = _j1_lifecycle()[0]
    replay = created.model_copy(update={"amount": 1, "tx_hash": txh(999)})
    Materializer(memory_store).apply([created, replay])

    assert memory_store.jobs[J1].amount == RELEASE_AMOUNT
    assert memory_store.agent(CLIENT).jobs_created == 1


def test_every_fetch_order_converges_after_merge():
    canonical = MemoryStore()
    Materializer(canonical).apply(_j1_lifecycle())

    for permutation in itertools.permutations(_j1_lifecycle()):
        store = MemoryStore()
        Materializer(store).apply(merge_events(permutation))
        assert store.dump() == canonical.dump()


def test_causality_violating_batch_does_not_corrupt_state(memory_store: MemoryStore):
    backwards = list(reversed(_j1_lifecycle()))
    result = Materializer(memory_store).apply(backwards)

    job = memory_store.jobs[J1]
    assert (job.accepted, job.completed, job.settlement) == (False, False, Settlement.UNSETTLED)
    assert memory_store.agent(PROVIDER).volume_settled == 0
    assert result["applied"] == 1
    assert result["skipped"] == 3


def test_events_for_unknown_jobs_are_skipped(memory_store: MemoryStore):
    orphan = PaymentReleased(
        job_id=jid(404), block_number=5, log_index=0, tx_hash=txh(1),
        provider=PROVIDER, amount=RELEASE_AMOUNT,
    )
    result = Materializer(memory_store).apply([orphan])

    assert result["skipped"] == 1
    assert memory_store.jobs == {}
    assert memory_store.agents() == {}
    assert memory_store.checkpoint == 5


def test_empty_batch_advances_checkpoint_through_range(memory_store: MemoryStore):
    result = Materializer(memory_store).apply([], through=500)
    assert result["checkpoint"] == 500
    assert memory_store.checkpoint == 500


def test_empty_batch_without_range_writes_nothing(memory_store: MemoryStore):
    result = Materializer(memory_store).apply([])
    assert result["checkpoint"] is None
    assert memory_store.checkpoint is None


def test_checkpoint_never_moves_backwards(memory_store: MemoryStore):
    materializer = Materializer(memory_store)
    materializer.apply([], through=900)
    materializer.apply(_j1_lifecycle(start_block=100))

    assert memory_store.checkpoint == 900


def test_mid_batch_failure_rolls_back_everything(memory_store: MemoryStore):
    materializer = Materializer(memory_store)
    materializer.apply(_j1_lifecycle())
    committed = memory_store.dump()

    memory_store.fail_after_writes = 3
    with pytest.raises(StorageError):
        materializer.apply(_j2_refund())

    assert memory_store.dump() == committed
    assert memory_store.checkpoint == 103
    assert memory_store.rollbacks == 1

    memory_store.fail_after_writes = None
    materializer.apply(_j2_refund())

    reference = MemoryStore()
    Materializer(reference).apply(_j1_lifecycle())
    Materializer(reference).apply(_j2_refund())
    assert memory_store.dump() == reference.dump()


def test_volume_is_conserved_across_overlapping_batches(memory_store: MemoryStore):
    events = generate_events(60, seed=7, agents=6)
    materializer = Materializer(memory_store)

    rng = random.Random(3)
    offset = 0
    while offset < len(events):
        size = rng.randint(5, 25)
        overlap = rng.randint(0, min(offset, 10))
        materializer.apply(events[offset - overlap : offset + size])
        offset += size

    expected_volume = defaultdict(int)
    expected_completed = defaultdict(int)
    for event in events:
        if isinstance(event, PaymentReleased):
            expected_volume[event.provider] += event.amount
            expected_completed[event.provider] += 1

    for address, agent in memory_store.agents().items():
        assert agent.volume_settled == expected_volume.get(address, 0)
        assert agent.jobs_completed == expected_completed.get(address, 0)
    assert memory_store.checkpoint == events[-1].block_number


def test_lifecycle_flags_are_monotonic(memory_store: MemoryStore):
    events = generate_events(40, seed=11, agents=5)
    materializer = Materializer(memory_store)
    previous = {}

    for start in range(0, len(events), 4):
        materializer.apply(events[start : start + 4])
        for job_id, job in memory_store.jobs.items():
            before = previous.get(job_id)
            if before is not None:
                assert job.accepted >= before.accepted
                assert job.completed >= before.completed
                if before.settlement is not Settlement.UNSETTLED:
                    assert job.settlement is before.settlement
            previous[job_id] = job
