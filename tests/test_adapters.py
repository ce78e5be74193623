"""Escrow ledger, mediator, notification and storage adapters"""

import json
from decimal import Decimal
import uuid

import httpx
import pytest

from disputeflow.adapters.ledger import HttpEscrowLedger
from disputeflow.adapters.notifications import EventSink, WebhookEventSink, publish
from disputeflow.adapters.oracle import LLMMediationOracle, parse_json_content
from disputeflow.adapters.storage import classify_upload
from disputeflow.core.exceptions import (
    InsufficientEscrow,
    LedgerUnavailable,
    OracleUnavailable,
    PercentSumMismatch,
    ValidationError,
)
from disputeflow.disputes.context import AnalysisSummary, DisputeContext, EvidenceItem, OfferItem, OptionItem
from disputeflow.disputes.phases import EvidenceType, PartyRole
from disputeflow.llm.types import LLMResponse
from disputeflow.tasks.background import drain

from tests.conftest import T0, RecordingSink


def _ledger(handler) -> HttpEscrowLedger:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpEscrowLedger(base_url="https://escrow.test/api/", api_key="secret", timeout=5, client=client)


class TestHttpEscrowLedger:
    @pytest.mark.asyncio
    async def test_held_amount(self):
        booking_id = uuid.uuid4()
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"held_amount": "200.00"})

        assert await _ledger(handler).get_held_amount(booking_id) == Decimal("200.00")
        assert seen[0].method == "GET"
        assert seen[0].url.path == f"/api/escrow/{booking_id}"
        assert seen[0].headers["X-API-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_unreadable_balance(self):
        ledger = _ledger(lambda request: httpx.Response(200, json={"balance": 5}))
        with pytest.raises(LedgerUnavailable):
            await ledger.get_held_amount(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_transfer_sends_split_with_idempotency_key(self):
        booking_id = uuid.uuid4()
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json={"reference": "tr_42"})

        receipt = await _ledger(handler).transfer(booking_id, 80, 20, idempotency_key="dispute:1:transfer")

        assert receipt.reference == "tr_42"
        assert (receipt.customer_percent, receipt.vendor_percent) == (80, 20)
        assert seen[0].url.path == f"/api/escrow/{booking_id}/transfers"
        assert seen[0].headers["Idempotency-Key"] == "dispute:1:transfer"
        assert json.loads(seen[0].content) == {"customer_percent": 80, "vendor_percent": 20}

    @pytest.mark.asyncio
    async def test_transfer_refuses_bad_split_before_calling_out(self):
        calls = []
        ledger = _ledger(lambda request: calls.append(request) or httpx.Response(200, json={}))
        with pytest.raises(PercentSumMismatch):
            await ledger.transfer(uuid.uuid4(), 60, 50, idempotency_key="k")
        assert calls == []

    @pytest.mark.asyncio
    async def test_rejected_transfer_is_insufficient_escrow(self):
        ledger = _ledger(lambda request: httpx.Response(409, text="escrow already released"))
        with pytest.raises(InsufficientEscrow) as exc:
            await ledger.transfer(uuid.uuid4(), 50, 50, idempotency_key="k")
        assert exc.value.details["retryable"] is True

    @pytest.mark.asyncio
    async def test_server_error_is_unavailable(self):
        ledger = _ledger(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(LedgerUnavailable):
            await ledger.transfer(uuid.uuid4(), 50, 50, idempotency_key="k")

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LedgerUnavailable):
            await _ledger(handler).get_held_amount(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_charge_fee(self):
        user_id = uuid.uuid4()
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"reference": "fee_7"})

        receipt = await _ledger(handler).charge_fee(user_id, Decimal("25.00"), "CHF", idempotency_key="fee-key")

        assert receipt.reference == "fee_7"
        assert seen[0].url.path == "/api/fees"
        assert seen[0].headers["Idempotency-Key"] == "fee-key"
        assert json.loads(seen[0].content) == {"user_id": str(user_id), "amount": "25.00", "currency": "CHF"}


class FakeLLM:
    model_name = "fake-model"

    def __init__(self, content: str | None = None, error: Exception | None = None):
        self.content = content
        self.error = error
        self.messages = []

    async def chat_completion(self, messages, temperature=0.7, max_tokens=None, json_mode=False):
        self.messages.append(messages)
        if self.error is not None:
            raise self.error
        return LLMResponse(content=self.content)


def _context(**overrides) -> DisputeContext:
    values = dict(
        dispute_id=uuid.uuid4(),
        booking_id=uuid.uuid4(),
        escrow_amount=Decimal("200.00"),
        currency="CHF",
        opened_by_role=PartyRole.CUSTOMER,
        opened_at=T0,
        snapshot_at=T0,
        reason="Kitchen left dirty",
        service_title="Apartment cleaning",
        evidence=(EvidenceItem(PartyRole.CUSTOMER, EvidenceType.IMAGE, "https://files.example/kitchen.jpg", T0),),
        offers=(OfferItem(PartyRole.CUSTOMER, 80, "Half the job", T0),),
    )
    values.update(overrides)
    return DisputeContext(**values)


def _option(label, customer, vendor, recommended=False):
    return {
        "label": label,
        "title": f"Option {label}",
        "customerRefundPercent": customer,
        "vendorPaymentPercent": vendor,
        "reasoning": "Because",
        "keyFactors": ["photos"],
        "isRecommended": recommended,
    }


class TestLLMMediationOracle:
    @pytest.mark.asyncio
    async def test_options_parsed_from_fenced_reply(self):
        body = {"options": [_option("c", 30, 70), _option("A", 50, 50), _option("B", 70, 30, True)]}
        llm = FakeLLM(f"Here you go:\n```json\n{json.dumps(body)}\n```")

        options = await LLMMediationOracle(llm).generate_options(_context())

        assert [o.label for o in options] == ["A", "B", "C"]
        assert [o.is_recommended for o in options] == [False, True, False]
        assert options[2].customer_refund_percent == 30
        prompt = llm.messages[0][-1]["content"]
        assert "https://files.example/kitchen.jpg" in prompt
        assert "customer offered 80% to the customer" in prompt
        assert "200.00 CHF" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "options",
        [
            [_option("A", 50, 50), _option("B", 70, 30)],
            [_option("A", 50, 50), _option("B", 70, 40), _option("C", 30, 70)],
            [_option("A", 50, 50), _option("A", 70, 30), _option("C", 30, 70)],
            [_option("A", 50.5, 49.5), _option("B", 70, 30), _option("C", 30, 70)],
            [_option("A", 50, 50, True), _option("B", 70, 30, True), _option("C", 30, 70)],
            [_option("A", 50, 50), _option("B", 70, 30), _option("C", 30, 70)],
        ],
    )
    async def test_invalid_options_rejected(self, options):
        oracle = LLMMediationOracle(FakeLLM(json.dumps({"options": options})))
        with pytest.raises(OracleUnavailable):
            await oracle.generate_options(_context())

    @pytest.mark.asyncio
    async def test_incomplete_option_rejected(self):
        option = _option("A", 50, 50)
        del option["vendorPaymentPercent"]
        oracle = LLMMediationOracle(FakeLLM(json.dumps({"options": [option]})))
        with pytest.raises(OracleUnavailable):
            await oracle.generate_options(_context())

    @pytest.mark.asyncio
    async def test_llm_failure_is_unavailable(self):
        oracle = LLMMediationOracle(FakeLLM(error=RuntimeError("rate limited")))
        with pytest.raises(OracleUnavailable):
            await oracle.generate_options(_context())

    @pytest.mark.asyncio
    async def test_analysis_parsed(self):
        body = {
            "evidenceAnalysis": {
                "customer": {"evidenceCount": 1, "evidenceStrength": "strong"},
                "vendor": {"evidenceCount": 0, "evidenceStrength": "none"},
            },
            "descriptionAnalysis": {"consistency": "mostly consistent"},
            "behaviorAnalysis": {"customerConduct": "cooperative"},
            "overallAssessment": {"primaryIssue": "Kitchen not cleaned", "faultAssessment": "vendor"},
        }
        llm = FakeLLM(json.dumps(body))

        analysis = await LLMMediationOracle(llm).analyze_dispute(_context())

        assert analysis.evidence_analysis["vendor"]["evidenceStrength"] == "none"
        assert analysis.overall_assessment["primaryIssue"] == "Kitchen not cleaned"
        assert analysis.ai_model == "fake-model"
        prompt = llm.messages[0][-1]["content"]
        assert "comprehensive assessment" in prompt
        assert "https://files.example/kitchen.jpg" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body",
        [
            {},
            {
                "evidenceAnalysis": {"customer": {"evidenceStrength": "strong"}},
                "descriptionAnalysis": {},
                "behaviorAnalysis": {},
                "overallAssessment": {},
            },
            {
                "evidenceAnalysis": {
                    "customer": {"evidenceStrength": "strong"},
                    "vendor": {"evidenceStrength": "decisive"},
                },
                "descriptionAnalysis": {},
                "behaviorAnalysis": {},
                "overallAssessment": {},
            },
        ],
    )
    async def test_invalid_analysis_rejected(self, body):
        oracle = LLMMediationOracle(FakeLLM(json.dumps(body)))
        with pytest.raises(OracleUnavailable):
            await oracle.analyze_dispute(_context())

    @pytest.mark.asyncio
    async def test_options_prompt_quotes_analysis(self):
        body = {"options": [_option("A", 50, 50), _option("B", 70, 30, True), _option("C", 30, 70)]}
        llm = FakeLLM(json.dumps(body))
        context = _context(
            analysis=AnalysisSummary(
                customer_evidence_strength="strong",
                vendor_evidence_strength="weak",
                primary_issue="Kitchen not cleaned",
                fault_assessment="vendor",
            )
        )

        await LLMMediationOracle(llm).generate_options(context)

        prompt = llm.messages[0][-1]["content"]
        assert "## AI analysis summary" in prompt
        assert "- Vendor evidence strength: weak" in prompt
        assert "- Primary issue: Kitchen not cleaned" in prompt

    @pytest.mark.asyncio
    async def test_decision_sees_mediation_history(self):
        llm = FakeLLM(
            json.dumps(
                {
                    "customerRefundPercent": 65,
                    "vendorPaymentPercent": 35,
                    "decisionSummary": "Mostly the customer",
                    "fullReasoning": "Photos show the kitchen untouched",
                    "keyFactors": ["photos", "timesheet"],
                }
            )
        )
        context = _context(
            options=(
                OptionItem("A", "Evidence", 50, 50, False),
                OptionItem("B", "Compromise", 70, 30, True),
                OptionItem("C", "Policy", 30, 70, False),
            ),
            selections={"customer": "B", "vendor": "C"},
        )

        decision = await LLMMediationOracle(llm).generate_decision(context)

        assert (decision.customer_refund_percent, decision.vendor_payment_percent) == (65, 35)
        assert decision.key_factors == ["photos", "timesheet"]
        prompt = llm.messages[0][-1]["content"]
        assert "Option B: 70% customer / 30% vendor" in prompt
        assert "vendor selected: C" in prompt

    @pytest.mark.asyncio
    async def test_decision_must_split_100(self):
        llm = FakeLLM(json.dumps({"customerRefundPercent": 65, "vendorPaymentPercent": 45, "decisionSummary": "x"}))
        with pytest.raises(OracleUnavailable):
            await LLMMediationOracle(llm).generate_decision(_context())

    @pytest.mark.parametrize("content", [None, "", "not json", "[1, 2]", "```json\n{broken\n```"])
    def test_unparseable_replies(self, content):
        with pytest.raises(OracleUnavailable):
            parse_json_content(content)


class TestNotifications:
    @pytest.mark.asyncio
    async def test_failing_sink_does_not_stop_later_events(self):
        class FlakySink(RecordingSink):
            async def emit(self, dispute_id, event_type, payload):
                if event_type == "counter_offer":
                    raise RuntimeError("webhook down")
                await super().emit(dispute_id, event_type, payload)

        sink = FlakySink()
        dispute_id = uuid.uuid4()
        publish(sink, dispute_id, [("counter_offer", {}), ("offer_accepted", {}), ("dispute_resolved", {})])
        await drain()

        assert sink.types(dispute_id) == ["offer_accepted", "dispute_resolved"]

    @pytest.mark.asyncio
    async def test_webhook_posts_event(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = WebhookEventSink("https://notify.test/events", client=client)
        dispute_id = uuid.uuid4()
        await sink.emit(dispute_id, "dispute_opened", {"sequence": 1})

        assert seen == [{"dispute_id": str(dispute_id), "event_type": "dispute_opened", "payload": {"sequence": 1}}]
        assert isinstance(sink, EventSink)


class TestEvidenceUploads:
    @pytest.mark.parametrize(
        "content_type,expected",
        [
            ("image/jpeg", EvidenceType.IMAGE),
            ("IMAGE/PNG", EvidenceType.IMAGE),
            ("application/pdf", EvidenceType.DOCUMENT),
            ("video/mp4", EvidenceType.VIDEO),
        ],
    )
    def test_accepted_types(self, content_type, expected):
        assert classify_upload(content_type, 1024) is expected

    def test_unsupported_type(self):
        with pytest.raises(ValidationError):
            classify_upload("application/zip", 1024)

    def test_size_cap(self):
        with pytest.raises(ValidationError):
            classify_upload("image/jpeg", 500 * 1024 * 1024)
