"""
Tests for expiring overdue signature requests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from signdesk.models import AuditLog, Contract, ContractStatus, SignatureRequestStatus
from signdesk.services.expiration_sweeper import (
    ExpirationSweeper,
    find_expired_requests,
    sweep_expired_requests,
)
from signdesk.services.signature_state import transition_request

NOW = datetime.now(timezone.utc)


class TestSweepExpiredRequests:
    @pytest.mark.asyncio
    async def test_overdue_request_expires_and_releases_contract(
        self, session, create_request, contract, bob, fetch_request, fetch_all
    ):
        request = await create_request(contract, [bob], expires_at=NOW - timedelta(hours=1))

        expired = await sweep_expired_requests(session)
        await session.commit()

        assert expired == [request.id]
        assert (await fetch_request(request.id)).status is SignatureRequestStatus.EXPIRED
        contracts = await fetch_all(Contract, Contract.id == contract.id)
        assert contracts[0].status is ContractStatus.DRAFT
        audits = await fetch_all(AuditLog, AuditLog.action == "signature_request.expired")
        assert [entry.signature_request_id for entry in audits] == [request.id]

    @pytest.mark.asyncio
    async def test_second_pass_is_a_noop(self, session, create_request, contract, bob, fetch_all):
        await create_request(contract, [bob], expires_at=NOW - timedelta(hours=1))
        await sweep_expired_requests(session)
        await session.commit()

        assert await sweep_expired_requests(session) == []
        audits = await fetch_all(AuditLog, AuditLog.action == "signature_request.expired")
        assert len(audits) == 1

    @pytest.mark.asyncio
    async def test_future_and_open_ended_requests_are_kept(
        self, session, create_request, make_contract, contract, alice, bob
    ):
        await create_request(contract, [bob], expires_at=NOW + timedelta(days=3))
        other = await make_contract(alice, title="Open Ended NDA")
        await create_request(other, [bob])

        assert await sweep_expired_requests(session) == []

    @pytest.mark.asyncio
    async def test_in_progress_requests_can_be_excluded(
        self, session, create_request, contract, bob, carol, fetch_request
    ):
        request = await create_request(contract, [bob, carol], expires_at=NOW - timedelta(hours=1))
        await transition_request(session, request.id, SignatureRequestStatus.IN_PROGRESS)
        await session.commit()

        assert await sweep_expired_requests(session, include_in_progress=False) == []
        assert await sweep_expired_requests(session, include_in_progress=True) == [request.id]
        await session.commit()
        assert (await fetch_request(request.id)).status is SignatureRequestStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_terminal_requests_are_never_expired(
        self, session, create_request, signature_service, contract, alice, bob
    ):
        request = await create_request(contract, [bob], expires_at=NOW - timedelta(hours=1))
        await signature_service.cancel(request.id, alice.id)
        await session.commit()

        assert await find_expired_requests(session) == []
        assert await sweep_expired_requests(session) == []

    @pytest.mark.asyncio
    async def test_find_reports_without_changing_state(self, session, create_request, contract, bob, fetch_request):
        request = await create_request(contract, [bob], expires_at=NOW - timedelta(hours=1))

        candidates = await find_expired_requests(session)

        assert candidates == [(request.id, contract.id)]
        assert (await fetch_request(request.id)).status is SignatureRequestStatus.PENDING


class TestExpirationSweeper:
    @pytest.mark.asyncio
    async def test_run_once_commits_in_its_own_session(
        self, session_factory, create_request, contract, bob, fetch_request
    ):
        request = await create_request(contract, [bob], expires_at=NOW - timedelta(minutes=5))
        sweeper = ExpirationSweeper(session_factory, interval_seconds=60)

        assert await sweeper.run_once() == [request.id]
        assert await sweeper.run_once() == []
        assert (await fetch_request(request.id)).status is SignatureRequestStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_start_and_stop(self, session_factory):
        sweeper = ExpirationSweeper(session_factory, interval_seconds=3600)

        sweeper.start()
        assert sweeper._task is not None
        await sweeper.stop()

        assert sweeper._task is None
