"""LangGraph orchestrator for the FactMate fact-checking pipeline."""

import asyncio
import logging
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union
from typing import Annotated, TypedDict

from langgraph.graph import StateGraph, START, END
from langgraph.types import Send

from ..models.schemas import (
    Claim,
    Credentials,
    ProcessStage,
    SessionState,
    VerificationResult,
    VerificationStatus,
)
from ..agents.extractor import ClaimExtractor
from ..agents.verifier import ClaimVerifier
from ..services.llm_service import LLMService, LLMServiceFactory

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS_MESSAGE = "Please enter your OpenAI API key."
EMPTY_TEXT_MESSAGE = "Please provide some text to verify."
NO_CLAIMS_MESSAGE = "No verifiable claims found in the text."
PROCESSING_ERROR_MESSAGE = (
    "An error occurred during processing. Please check your API key and try again."
)


def merge_results(
    left: Dict[str, VerificationResult],
    right: Dict[str, VerificationResult]
) -> Dict[str, VerificationResult]:
    """Reducer for per-claim results: insert-only, first result wins."""
    merged = dict(left or {})
    for claim_id, result in (right or {}).items():
        merged.setdefault(claim_id, result)
    return merged


class PipelineState(TypedDict, total=False):
    """State flowing through the verification graph."""
    text: str
    credentials: Optional[Credentials]
    llm_service: Optional[LLMService]
    claims: List[Claim]
    results: Annotated[Dict[str, VerificationResult], merge_results]


class ClaimTask(TypedDict):
    """Input of a single fan-out verification task."""
    claim: Claim
    credentials: Optional[Credentials]
    llm_service: Optional[LLMService]


class VerificationGraph:
    """LangGraph pipeline: extract claims once, then verify each one.

    Verification tasks are dispatched with ``Send`` so they all run in the
    same superstep and complete in whatever order the API answers. A task
    that fails is logged and contributes no result.

    Every run builds one LLM service from its credentials, shares it between
    the extraction and all verification tasks, and closes it when the run ends.
    """

    def __init__(
        self,
        extractor: Optional[ClaimExtractor] = None,
        verifier: Optional[ClaimVerifier] = None,
        llm_service_factory: Optional[LLMServiceFactory] = None
    ):
        """Initialize the graph with its agents.

        Args:
            extractor: Custom claim extractor
            verifier: Custom claim verifier
            llm_service_factory: Builds the per-run LLM service from credentials
        """
        self.extractor = extractor or ClaimExtractor()
        self.verifier = verifier or ClaimVerifier()
        self.llm_service_factory = llm_service_factory or LLMService.from_credentials

        self.graph = self._build_graph()
        self.compiled_graph = self.graph.compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(PipelineState)

        graph.add_node("extract_claims", self._extract_claims_node)
        graph.add_node("verify_claim", self._verify_claim_node)

        graph.add_edge(START, "extract_claims")

        # extract_claims -> one verify_claim per claim, or END if there are none
        graph.add_conditional_edges(
            "extract_claims",
            self._route_after_extraction,
            ["verify_claim", END]
        )

        graph.add_edge("verify_claim", END)

        return graph

    # ==================== Node Functions ====================

    async def _extract_claims_node(self, state: PipelineState) -> Dict[str, Any]:
        logger.info("Extracting claims from text...")
        claims = await self.extractor.extract(
            state["text"],
            state.get("credentials"),
            llm_service=state.get("llm_service")
        )
        return {"claims": claims}

    async def _verify_claim_node(self, task: ClaimTask) -> Dict[str, Any]:
        claim = task["claim"]

        try:
            result = await self.verifier.verify(
                claim,
                task.get("credentials"),
                llm_service=task.get("llm_service")
            )
        except Exception as e:
            logger.error(f"Failed to verify claim {claim.id}: {e}")
            return {"results": {}}

        return {"results": {claim.id: result}}

    # ==================== Routing Functions ====================

    def _route_after_extraction(self, state: PipelineState) -> Union[str, List[Send]]:
        claims = state.get("claims") or []

        if not claims:
            logger.warning("No claims extracted, nothing to verify")
            return END

        logger.info(f"Dispatching verification for {len(claims)} claims")
        return [
            Send("verify_claim", {
                "claim": claim,
                "credentials": state.get("credentials"),
                "llm_service": state.get("llm_service"),
            })
            for claim in claims
        ]

    # ==================== Public Interface ====================

    @staticmethod
    def create_initial_state(
        text: str,
        credentials: Optional[Credentials],
        llm_service: Optional[LLMService] = None
    ) -> PipelineState:
        return PipelineState(
            text=text,
            credentials=credentials,
            llm_service=llm_service,
            claims=[],
            results={}
        )

    async def astream(
        self,
        text: str,
        credentials: Optional[Credentials]
    ) -> AsyncIterator[Dict[str, Any]]:
        """Stream node updates as each node or verification task finishes.

        Yields:
            Mappings of node name to the update that node produced

        Raises:
            MissingCredentialsError: If the credentials carry no LLM key
        """
        llm_service = self.llm_service_factory(credentials)
        initial_state = self.create_initial_state(text, credentials, llm_service)

        try:
            async for update in self.compiled_graph.astream(initial_state, stream_mode="updates"):
                yield update
        finally:
            await llm_service.close()

    async def arun(self, text: str, credentials: Optional[Credentials]) -> PipelineState:
        """Run the whole pipeline and return the final graph state."""
        llm_service = self.llm_service_factory(credentials)
        initial_state = self.create_initial_state(text, credentials, llm_service)

        try:
            return await self.compiled_graph.ainvoke(initial_state)
        finally:
            await llm_service.close()


StateListener = Callable[[SessionState], None]


class FactCheckSession:
    """Owner of one user's fact-checking session state.

    The session is the only writer of its :class:`SessionState`. Every
    transition replaces the state wholesale and notifies subscribers with
    the new snapshot. Each submission gets a fresh run id; updates that
    arrive from a run which is no longer current are discarded.
    """

    def __init__(
        self,
        graph: Optional[VerificationGraph] = None,
        credentials: Optional[Credentials] = None
    ):
        self.graph = graph or VerificationGraph()
        self.credentials = credentials
        self._state = SessionState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> SessionState:
        return self._state

    def set_credentials(self, credentials: Optional[Credentials]):
        self.credentials = credentials

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener for state changes.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _replace_state(self, state: SessionState):
        self._state = state
        for listener in list(self._listeners):
            listener(state)

    def _update_state(self, **changes):
        self._replace_state(self._state.model_copy(update=changes))

    def _is_current(self, run_id: str) -> bool:
        return self._state.run_id == run_id

    async def submit(self, text: str) -> SessionState:
        """Run extraction and verification for a new submission.

        Args:
            text: Source text to fact-check

        Returns:
            The session state once this run has settled
        """
        if self.credentials is None or not self.credentials.has_llm_key:
            logger.warning("Submission rejected: LLM API key is missing")
            self._update_state(error=MISSING_CREDENTIALS_MESSAGE)
            return self._state

        if not text or not text.strip():
            self._update_state(error=EMPTY_TEXT_MESSAGE)
            return self._state

        run_id = str(uuid.uuid4())
        self._replace_state(SessionState(run_id=run_id, stage=ProcessStage.EXTRACTING))
        logger.info(f"Run {run_id} started ({len(text)} characters)")

        try:
            async with aclosing(self.graph.astream(text, self.credentials)) as updates:
                async for update in updates:
                    for node_name, payload in update.items():
                        # Tasks of one node finishing together arrive as a list
                        payloads = payload if isinstance(payload, list) else [payload]
                        for item in payloads:
                            self._apply_update(run_id, node_name, item or {})
        except Exception as e:
            logger.error(f"Run {run_id} failed: {e}")
            if self._is_current(run_id) and self._state.stage == ProcessStage.EXTRACTING:
                self._update_state(stage=ProcessStage.IDLE, error=PROCESSING_ERROR_MESSAGE)
                return self._state

        if self._is_current(run_id) and self._state.stage == ProcessStage.VERIFYING:
            self._update_state(stage=ProcessStage.COMPLETE)
            logger.info(f"Run {run_id} complete: {self._summarize(self._state)}")

        return self._state

    def _apply_update(self, run_id: str, node_name: str, payload: Dict[str, Any]):
        if not self._is_current(run_id):
            logger.debug(f"Discarding stale {node_name} update from run {run_id}")
            return

        if node_name == "extract_claims":
            claims = list(payload.get("claims") or [])
            if not claims:
                self._update_state(stage=ProcessStage.IDLE, error=NO_CLAIMS_MESSAGE)
                return
            self._update_state(stage=ProcessStage.VERIFYING, claims=claims)

        elif node_name == "verify_claim":
            self._record_results(payload.get("results") or {})

    def _record_results(self, results: Dict[str, VerificationResult]):
        if not results or self._state.stage != ProcessStage.VERIFYING:
            return

        claim_ids = {claim.id for claim in self._state.claims}
        merged = dict(self._state.results)

        for claim_id, result in results.items():
            if claim_id not in claim_ids:
                logger.warning(f"Ignoring result for unknown claim {claim_id}")
                continue
            if claim_id in merged:
                logger.debug(f"Ignoring duplicate result for claim {claim_id}")
                continue
            merged[claim_id] = result

        if len(merged) > len(self._state.results):
            self._update_state(results=merged)

    @staticmethod
    def _summarize(state: SessionState) -> str:
        counts = {status: 0 for status in VerificationStatus}
        for claim in state.claims:
            result = state.results.get(claim.id)
            counts[result.status if result else VerificationStatus.PENDING] += 1
        return ", ".join(f"{counts[status]} {status.value.lower()}" for status in VerificationStatus)


# ==================== Module-level convenience functions ====================

def create_graph(**kwargs) -> VerificationGraph:
    """Create a verification graph instance.

    Args:
        **kwargs: Arguments for VerificationGraph

    Returns:
        Configured VerificationGraph instance
    """
    return VerificationGraph(**kwargs)


async def run_fact_check_async(text: str, credentials: Credentials, **kwargs) -> SessionState:
    """Fact-check text in a fresh session and return the settled state.

    Args:
        text: Input text to fact-check
        credentials: Credentials carrying the LLM key
        **kwargs: Arguments for VerificationGraph
    """
    session = FactCheckSession(graph=create_graph(**kwargs), credentials=credentials)
    return await session.submit(text)


def run_fact_check(text: str, credentials: Credentials, **kwargs) -> SessionState:
    """Synchronous wrapper around :func:`run_fact_check_async`."""
    return asyncio.run(run_fact_check_async(text, credentials, **kwargs))
