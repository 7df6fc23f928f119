"""Tests for the verification graph and the session state machine."""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock
from pydantic import SecretStr

from factmate.agents.extractor import ClaimExtractor
from factmate.exceptions import LLMRequestError, MissingCredentialsError
from factmate.graph.orchestrator import (
    EMPTY_TEXT_MESSAGE,
    MISSING_CREDENTIALS_MESSAGE,
    NO_CLAIMS_MESSAGE,
    PROCESSING_ERROR_MESSAGE,
    FactCheckSession,
    VerificationGraph,
    merge_results,
)
from factmate.models.schemas import (
    Claim,
    ClaimType,
    Credentials,
    ProcessStage,
    VerificationResult,
    VerificationStatus,
)
from factmate.services.llm_service import LLMService


CREDENTIALS = Credentials(llm_api_key=SecretStr("sk-test"))


class FakeVerifier:
    """Verifier double that answers TRUE, fails for chosen claims and can delay."""

    def __init__(self, failing_ids=(), delays=None):
        self.failing_ids = set(failing_ids)
        self.delays = delays or {}
        self.calls = []

    async def verify(self, claim, credentials, llm_service=None):
        self.calls.append(claim.id)
        await asyncio.sleep(self.delays.get(claim.id, 0))
        if claim.id in self.failing_ids:
            raise LLMRequestError(f"verification of {claim.id} failed")
        return VerificationResult(
            claim_id=claim.id,
            status=VerificationStatus.VERIFIED_TRUE,
            reasoning=f"Checked: {claim.text}"
        )


def make_extractor(claims=None, error=None):
    extractor = Mock(spec=ClaimExtractor)
    if error is not None:
        extractor.extract = AsyncMock(side_effect=error)
    else:
        extractor.extract = AsyncMock(return_value=claims or [])
    return extractor


def make_graph(extractor, verifier, llm_service_factory=None):
    """Build a graph whose per-run LLM service is a mock."""
    if llm_service_factory is None:
        llm_service_factory = Mock(side_effect=lambda credentials: Mock(spec=LLMService))
    return VerificationGraph(
        extractor=extractor,
        verifier=verifier,
        llm_service_factory=llm_service_factory
    )


def make_session(extractor, verifier=None, credentials=CREDENTIALS):
    graph = make_graph(extractor, verifier or FakeVerifier())
    return FactCheckSession(graph=graph, credentials=credentials)


def make_claims(count):
    return [Claim(text=f"Claim number {i}.", type=ClaimType.GENERAL) for i in range(1, count + 1)]


class TestMergeResults:
    """Test the insert-only results reducer."""

    def test_first_result_wins(self):
        first = VerificationResult(claim_id="c1", status=VerificationStatus.VERIFIED_TRUE)
        second = VerificationResult(claim_id="c1", status=VerificationStatus.VERIFIED_FALSE)

        merged = merge_results({"c1": first}, {"c1": second})

        assert merged == {"c1": first}

    def test_inputs_are_not_mutated(self):
        left = {}
        result = VerificationResult(claim_id="c2", status=VerificationStatus.UNCERTAIN)

        merged = merge_results(left, {"c2": result})

        assert left == {}
        assert merged == {"c2": result}


class TestVerificationGraph:
    """Test the LangGraph pipeline on its own."""

    def test_arun_verifies_every_claim(self):
        claims = make_claims(3)
        verifier = FakeVerifier()
        graph = make_graph(make_extractor(claims), verifier)

        final_state = asyncio.run(graph.arun("text", CREDENTIALS))

        assert [c.id for c in final_state["claims"]] == [c.id for c in claims]
        assert set(final_state["results"]) == {c.id for c in claims}
        assert sorted(verifier.calls) == sorted(c.id for c in claims)

    def test_arun_without_claims_skips_verification(self):
        verifier = FakeVerifier()
        graph = make_graph(make_extractor([]), verifier)

        final_state = asyncio.run(graph.arun("text", CREDENTIALS))

        assert final_state["claims"] == []
        assert final_state["results"] == {}
        assert verifier.calls == []

    def test_extraction_happens_before_verification(self):
        """No verification call is made until extraction has returned."""
        claims = make_claims(2)
        order = []

        async def extract(text, credentials, llm_service=None):
            order.append("extract:start")
            await asyncio.sleep(0.01)
            order.append("extract:end")
            return claims

        class RecordingVerifier(FakeVerifier):
            async def verify(self, claim, credentials, llm_service=None):
                order.append("verify")
                return await super().verify(claim, credentials, llm_service)

        extractor = Mock(spec=ClaimExtractor)
        extractor.extract = extract
        graph = make_graph(extractor, RecordingVerifier())

        asyncio.run(graph.arun("text", CREDENTIALS))

        assert order[:2] == ["extract:start", "extract:end"]
        assert order[2:] == ["verify", "verify"]

    def test_run_shares_one_llm_service(self):
        """Extraction and every verification task use the same service."""
        claims = make_claims(3)
        service = Mock(spec=LLMService)
        factory = Mock(return_value=service)
        extractor = make_extractor(claims)
        seen = []

        class RecordingVerifier(FakeVerifier):
            async def verify(self, claim, credentials, llm_service=None):
                seen.append(llm_service)
                return await super().verify(claim, credentials, llm_service)

        graph = make_graph(extractor, RecordingVerifier(), llm_service_factory=factory)

        asyncio.run(graph.arun("text", CREDENTIALS))

        factory.assert_called_once_with(CREDENTIALS)
        assert extractor.extract.call_args.kwargs["llm_service"] is service
        assert len(seen) == 3
        assert all(s is service for s in seen)
        service.close.assert_awaited_once()

    def test_llm_service_closed_when_extraction_fails(self):
        service = Mock(spec=LLMService)
        graph = make_graph(
            make_extractor(error=LLMRequestError("network down")),
            FakeVerifier(),
            llm_service_factory=Mock(return_value=service)
        )

        with pytest.raises(LLMRequestError):
            asyncio.run(graph.arun("text", CREDENTIALS))

        service.close.assert_awaited_once()

    def test_missing_key_fails_before_running(self):
        extractor = make_extractor(make_claims(1))
        graph = make_graph(extractor, FakeVerifier(), llm_service_factory=LLMService.from_credentials)

        with pytest.raises(MissingCredentialsError):
            asyncio.run(graph.arun("text", Credentials()))

        extractor.extract.assert_not_called()


class TestFactCheckSession:
    """Test the session state machine."""

    def test_successful_run_reaches_complete(self):
        claims = make_claims(3)
        session = make_session(make_extractor(claims))

        state = asyncio.run(session.submit("Some text with facts."))

        assert state.stage == ProcessStage.COMPLETE
        assert state.error is None
        assert [c.id for c in state.claims] == [c.id for c in claims]
        assert set(state.results) == {c.id for c in claims}
        assert all(r.status == VerificationStatus.VERIFIED_TRUE for r in state.results.values())

    def test_stage_transitions_are_published(self):
        claims = make_claims(2)
        session = make_session(make_extractor(claims))
        snapshots = []
        session.subscribe(snapshots.append)

        asyncio.run(session.submit("text"))

        stages = [s.stage for s in snapshots]
        assert stages[0] == ProcessStage.EXTRACTING
        assert stages[1] == ProcessStage.VERIFYING
        assert stages[-1] == ProcessStage.COMPLETE
        # The results mapping only grows while verifying
        sizes = [len(s.results) for s in snapshots]
        assert sizes == sorted(sizes)
        assert sizes[-1] == 2

    def test_state_snapshots_are_never_mutated(self):
        session = make_session(make_extractor(make_claims(2)))
        snapshots = []
        session.subscribe(snapshots.append)

        asyncio.run(session.submit("text"))

        verifying = next(s for s in snapshots if s.stage == ProcessStage.VERIFYING)
        assert verifying.results == {}

    def test_unsubscribe_stops_notifications(self):
        session = make_session(make_extractor(make_claims(1)))
        snapshots = []
        unsubscribe = session.subscribe(snapshots.append)
        unsubscribe()

        asyncio.run(session.submit("text"))

        assert snapshots == []

    def test_zero_claims_returns_to_idle(self):
        verifier = FakeVerifier()
        session = make_session(make_extractor([]), verifier)

        state = asyncio.run(session.submit("Nothing factual here."))

        assert state.stage == ProcessStage.IDLE
        assert state.error == NO_CLAIMS_MESSAGE
        assert state.results == {}
        assert verifier.calls == []

    def test_partial_failure_still_completes(self):
        """A failing claim is left pending while the batch completes."""
        claims = make_claims(3)
        verifier = FakeVerifier(failing_ids=[claims[1].id])
        session = make_session(make_extractor(claims), verifier)

        state = asyncio.run(session.submit("text"))

        assert state.stage == ProcessStage.COMPLETE
        assert set(state.results) == {claims[0].id, claims[2].id}
        assert claims[1].id not in state.results
        assert state.error is None
        assert len(verifier.calls) == 3

    def test_results_arrive_in_completion_order(self):
        """Each result is published as soon as its own check finishes."""
        claims = make_claims(3)
        delays = {claims[0].id: 0.3, claims[1].id: 0.0, claims[2].id: 0.15}
        session = make_session(make_extractor(claims), FakeVerifier(delays=delays))
        arrivals = []
        snapshots = []

        def record(state):
            snapshots.append(state)
            new_ids = set(state.results) - set(arrivals)
            arrivals.extend(sorted(new_ids))

        session.subscribe(record)

        state = asyncio.run(session.submit("text"))

        assert state.stage == ProcessStage.COMPLETE
        assert arrivals == [claims[1].id, claims[2].id, claims[0].id]
        assert any(
            s.stage == ProcessStage.VERIFYING and 0 < len(s.results) < len(claims)
            for s in snapshots
        )

    def test_run_closes_its_llm_service(self):
        service = Mock(spec=LLMService)
        graph = make_graph(
            make_extractor(make_claims(2)),
            FakeVerifier(),
            llm_service_factory=Mock(return_value=service)
        )
        session = FactCheckSession(graph=graph, credentials=CREDENTIALS)

        state = asyncio.run(session.submit("text"))

        assert state.stage == ProcessStage.COMPLETE
        service.close.assert_awaited_once()

    def test_extraction_failure_returns_to_idle(self):
        verifier = FakeVerifier()
        session = make_session(make_extractor(error=LLMRequestError("network down")), verifier)

        state = asyncio.run(session.submit("text"))

        assert state.stage == ProcessStage.IDLE
        assert state.error == PROCESSING_ERROR_MESSAGE
        assert state.claims == []
        assert verifier.calls == []

    def test_missing_credentials_short_circuits(self):
        extractor = make_extractor(make_claims(1))
        session = make_session(extractor, credentials=None)

        state = asyncio.run(session.submit("text"))

        assert state.stage == ProcessStage.IDLE
        assert state.error == MISSING_CREDENTIALS_MESSAGE
        assert state.run_id is None
        extractor.extract.assert_not_called()

    def test_blank_key_counts_as_missing(self):
        extractor = make_extractor(make_claims(1))
        session = make_session(extractor, credentials=Credentials(llm_api_key=SecretStr("")))

        state = asyncio.run(session.submit("text"))

        assert state.error == MISSING_CREDENTIALS_MESSAGE
        extractor.extract.assert_not_called()

    def test_empty_text_is_rejected(self):
        extractor = make_extractor(make_claims(1))
        session = make_session(extractor)

        state = asyncio.run(session.submit("   \n"))

        assert state.stage == ProcessStage.IDLE
        assert state.error == EMPTY_TEXT_MESSAGE
        extractor.extract.assert_not_called()

    def test_new_submission_resets_state(self):
        first_claims = make_claims(2)
        second_claims = [Claim(text="A different claim.")]
        extractor = make_extractor()
        extractor.extract = AsyncMock(side_effect=[first_claims, [], second_claims])
        session = make_session(extractor)

        first = asyncio.run(session.submit("first"))
        assert first.stage == ProcessStage.COMPLETE

        empty = asyncio.run(session.submit("second"))
        assert empty.claims == []
        assert empty.results == {}
        assert empty.error == NO_CLAIMS_MESSAGE

        third = asyncio.run(session.submit("third"))
        assert third.error is None
        assert [c.id for c in third.claims] == [second_claims[0].id]
        assert set(third.results) == {second_claims[0].id}
        assert third.run_id != first.run_id

    def test_superseded_run_results_are_discarded(self):
        """Late results from an earlier submission never touch the current state."""
        old_claim = Claim(text="Old claim.")
        new_claim = Claim(text="New claim.")

        async def scenario():
            gate = asyncio.Event()

            async def extract(text, credentials, llm_service=None):
                if text == "first":
                    await gate.wait()
                    return [old_claim]
                return [new_claim]

            extractor = Mock(spec=ClaimExtractor)
            extractor.extract = extract
            session = make_session(extractor)

            first = asyncio.create_task(session.submit("first"))
            await asyncio.sleep(0)
            second_state = await session.submit("second")

            gate.set()
            await first
            return second_state, session.state

        second_state, final_state = asyncio.run(scenario())

        assert second_state.stage == ProcessStage.COMPLETE
        assert final_state == second_state
        assert [c.id for c in final_state.claims] == [new_claim.id]
        assert old_claim.id not in final_state.results

    def test_late_results_of_superseded_verification_are_discarded(self):
        """A run replaced while verifying never writes its late results."""
        old_claim = Claim(text="Old claim.")
        new_claim = Claim(text="New claim.")
        verifier = FakeVerifier(delays={old_claim.id: 0.3})

        async def extract(text, credentials, llm_service=None):
            return [old_claim] if text == "first" else [new_claim]

        async def scenario():
            extractor = Mock(spec=ClaimExtractor)
            extractor.extract = extract
            session = make_session(extractor, verifier)
            snapshots = []

            first = asyncio.create_task(session.submit("first"))
            while session.state.stage != ProcessStage.VERIFYING:
                await asyncio.sleep(0.01)
            old_run_id = session.state.run_id

            session.subscribe(snapshots.append)
            second_state = await session.submit("second")
            await first
            return old_run_id, second_state, session.state, snapshots

        old_run_id, second_state, final_state, snapshots = asyncio.run(scenario())

        assert old_claim.id in verifier.calls
        assert second_state.stage == ProcessStage.COMPLETE
        assert final_state == second_state
        assert final_state.run_id != old_run_id
        assert [c.id for c in final_state.claims] == [new_claim.id]
        assert set(final_state.results) == {new_claim.id}
        assert all(old_claim.id not in s.results for s in snapshots)
        assert all(s.run_id != old_run_id for s in snapshots)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
