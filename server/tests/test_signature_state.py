"""
Tests for the guarded status transitions.
"""

from datetime import datetime, timedelta, timezone

import pytest

from signdesk.models import Contract, ContractStatus, SignatoryStatus, SignatureRequestStatus, SigningOrder
from signdesk.services.signature_state import (
    as_utc,
    can_transition_request,
    request_sources,
    set_contract_status,
    signatory_sources,
    transition_request,
    transition_signatory,
)


def test_request_transition_table():
    assert can_transition_request(SignatureRequestStatus.PENDING, SignatureRequestStatus.IN_PROGRESS)
    assert can_transition_request(SignatureRequestStatus.IN_PROGRESS, SignatureRequestStatus.COMPLETED)
    assert not can_transition_request(SignatureRequestStatus.IN_PROGRESS, SignatureRequestStatus.PENDING)
    for terminal in (
        SignatureRequestStatus.COMPLETED,
        SignatureRequestStatus.CANCELLED,
        SignatureRequestStatus.EXPIRED,
    ):
        assert not can_transition_request(terminal, SignatureRequestStatus.IN_PROGRESS)


def test_sources_are_derived_from_the_table():
    assert request_sources(SignatureRequestStatus.EXPIRED) == (
        SignatureRequestStatus.PENDING,
        SignatureRequestStatus.IN_PROGRESS,
    )
    assert signatory_sources(SignatoryStatus.PENDING) == (SignatoryStatus.WAITING,)
    assert signatory_sources(SignatoryStatus.SIGNED) == (SignatoryStatus.WAITING, SignatoryStatus.PENDING)


def test_as_utc_assumes_naive_values_are_utc():
    naive = datetime(2026, 1, 1, 9, 0)
    offset = datetime(2026, 1, 1, 11, 0, tzinfo=timezone(timedelta(hours=2)))

    assert as_utc(naive) == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert as_utc(offset) == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_only_one_terminal_transition_wins(session, create_request, contract, bob, fetch_request):
    request = await create_request(contract, [bob])

    cancelled = await transition_request(session, request.id, SignatureRequestStatus.CANCELLED)
    expired = await transition_request(session, request.id, SignatureRequestStatus.EXPIRED)
    await session.commit()

    assert cancelled.succeeded
    assert not expired.succeeded
    assert expired.reason is not None
    assert (await fetch_request(request.id)).status is SignatureRequestStatus.CANCELLED


@pytest.mark.asyncio
async def test_sequence_guard_blocks_activation_past_unsigned_signer(session, create_request, contract, bob, carol):
    request = await create_request(contract, [bob, carol])
    second = request.signatories[1]

    result = await transition_signatory(
        session, second, SignatoryStatus.PENDING, enforce_sequence=SigningOrder.SEQUENTIAL
    )

    assert not result.succeeded


@pytest.mark.asyncio
async def test_contract_status_is_compare_and_swap(session, contract, fetch_all):
    assert await set_contract_status(
        session, contract.id, ContractStatus.PENDING_SIGNATURE, sources=(ContractStatus.DRAFT,)
    )
    assert not await set_contract_status(
        session, contract.id, ContractStatus.PENDING_SIGNATURE, sources=(ContractStatus.DRAFT,)
    )
    await session.commit()

    contracts = await fetch_all(Contract, Contract.id == contract.id)
    assert contracts[0].status is ContractStatus.PENDING_SIGNATURE
