"""AI mediation oracle.

The state machine only sees `MediationOracle`; the LLM-backed implementation
is one provider of it and tests substitute deterministic fakes.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from disputeflow.core.exceptions import OracleUnavailable
from disputeflow.core.logging import log
from disputeflow.db.models.mediation import OPTION_LABELS
from disputeflow.disputes.context import DisputeContext
from disputeflow.disputes.phases import PartyRole
from disputeflow.llm import LLMClient, get_llm_client


@dataclass
class OracleOption:
    label: str
    title: str
    customer_refund_percent: int
    vendor_payment_percent: int
    reasoning: str
    key_factors: list[str] = field(default_factory=list)
    is_recommended: bool = False


@dataclass
class OracleAnalysis:
    evidence_analysis: dict[str, Any]
    description_analysis: dict[str, Any]
    behavior_analysis: dict[str, Any]
    overall_assessment: dict[str, Any]
    ai_model: str | None = None


@dataclass
class OracleDecision:
    customer_refund_percent: int
    vendor_payment_percent: int
    decision_summary: str
    full_reasoning: str
    key_factors: list[str] = field(default_factory=list)


class MediationOracle(ABC):
    """Black-box mediator consulted on escalation."""

    @abstractmethod
    async def analyze_dispute(self, context: DisputeContext) -> OracleAnalysis:
        """Assess evidence, both accounts and conduct before options are drawn up."""

    @abstractmethod
    async def generate_options(self, context: DisputeContext) -> list[OracleOption]:
        """Return exactly three options labelled A, B and C."""

    @abstractmethod
    async def generate_decision(self, context: DisputeContext) -> OracleDecision:
        """Return a single binding split."""


def _is_percent(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= 100


def validate_options(options: list[OracleOption]) -> list[OracleOption]:
    """Reject mediator output that would break the option invariants."""
    if len(options) != len(OPTION_LABELS):
        raise OracleUnavailable(f"expected {len(OPTION_LABELS)} options, got {len(options)}")
    if sorted(option.label for option in options) != list(OPTION_LABELS):
        raise OracleUnavailable("options must be labelled A, B and C")
    for option in options:
        if not (_is_percent(option.customer_refund_percent) and _is_percent(option.vendor_payment_percent)):
            raise OracleUnavailable(f"option {option.label} has a non-integer percentage")
        if option.customer_refund_percent + option.vendor_payment_percent != 100:
            raise OracleUnavailable(f"option {option.label} does not split 100%")
    if sum(option.is_recommended for option in options) != 1:
        raise OracleUnavailable("exactly one option must be marked as recommended")
    return sorted(options, key=lambda option: option.label)


def validate_decision(decision: OracleDecision) -> OracleDecision:
    if not (_is_percent(decision.customer_refund_percent) and _is_percent(decision.vendor_payment_percent)):
        raise OracleUnavailable("decision has a non-integer percentage")
    if decision.customer_refund_percent + decision.vendor_payment_percent != 100:
        raise OracleUnavailable("decision does not split 100%")
    if not decision.decision_summary.strip():
        raise OracleUnavailable("decision has no summary")
    return decision


EVIDENCE_STRENGTHS = ("strong", "moderate", "weak", "none")


def validate_analysis(analysis: OracleAnalysis) -> OracleAnalysis:
    sections = {
        "evidenceAnalysis": analysis.evidence_analysis,
        "descriptionAnalysis": analysis.description_analysis,
        "behaviorAnalysis": analysis.behavior_analysis,
        "overallAssessment": analysis.overall_assessment,
    }
    for name, section in sections.items():
        if not isinstance(section, dict):
            raise OracleUnavailable(f"analysis section {name} is missing")
    for role in ("customer", "vendor"):
        party = analysis.evidence_analysis.get(role)
        if not isinstance(party, dict) or party.get("evidenceStrength") not in EVIDENCE_STRENGTHS:
            raise OracleUnavailable(f"analysis has no evidence strength for the {role}")
    return analysis


SYSTEM_PROMPT = (
    "You are an impartial dispute resolution specialist for a Swiss services marketplace. "
    "A customer and a vendor disagree about how to split a payment held in escrow. "
    "Be fair, weigh the evidence and the negotiation history, and always answer in valid JSON."
)


def _describe(context: DisputeContext) -> str:
    lines = [
        "## Dispute",
        f"- Escrow amount: {context.escrow_amount} {context.currency}",
        f"- Service: {context.service_title or 'N/A'}",
        f"- Opened by: {context.opened_by_role.value} on {context.opened_at:%Y-%m-%d}",
        f"- Reason given: {context.reason or 'No description provided'}",
        "",
    ]
    for role in (PartyRole.CUSTOMER, PartyRole.VENDOR):
        items = context.evidence_by(role)
        lines.append(f"## {role.value.title()} evidence ({len(items)} items)")
        lines.extend(f"{i}. [{item.type.value}] {item.url}" for i, item in enumerate(items, 1))
        if not items:
            lines.append("No evidence submitted")
        lines.append("")

    lines.append("## Negotiation history (oldest first)")
    if context.offers:
        for offer in context.offers:
            note = f" - {offer.message}" if offer.message else ""
            lines.append(
                f"- {offer.author_role.value} offered {offer.percent_to_customer}% to the customer{note}"
            )
    else:
        lines.append("No offers were exchanged")
    return "\n".join(lines)


def _analysis_section(context: DisputeContext) -> str:
    analysis = context.analysis
    if analysis is None:
        return ""
    return f"""## AI analysis summary
- Customer evidence strength: {analysis.customer_evidence_strength or 'N/A'}
- Vendor evidence strength: {analysis.vendor_evidence_strength or 'N/A'}
- Primary issue: {analysis.primary_issue or 'N/A'}
- Fault assessment: {analysis.fault_assessment or 'N/A'}
"""


def build_analysis_prompt(context: DisputeContext) -> str:
    return f"""Analyze this dispute and provide a comprehensive assessment.

{_describe(context)}

## Response format
{{
  "evidenceAnalysis": {{
    "customer": {{
      "evidenceCount": 0,
      "evidenceTypes": ["image"],
      "evidenceStrength": "strong" | "moderate" | "weak" | "none",
      "evidenceSummary": "..."
    }},
    "vendor": {{ same fields as customer }}
  }},
  "descriptionAnalysis": {{
    "customerAccount": "...",
    "vendorAccount": "...",
    "consistencyScore": 0-100,
    "contradictions": ["..."],
    "verifiableClaims": ["..."]
  }},
  "behaviorAnalysis": {{
    "customer": {{
      "responseTime": "fast" | "moderate" | "slow" | "unresponsive",
      "tone": "professional" | "neutral" | "frustrated" | "hostile",
      "goodFaithScore": 0-100,
      "cooperationLevel": "..."
    }},
    "vendor": {{ same fields as customer }}
  }},
  "overallAssessment": {{
    "primaryIssue": "...",
    "faultAssessment": "...",
    "mitigatingFactors": ["..."],
    "aggravatingFactors": ["..."]
  }}
}}"""


def build_options_prompt(context: DisputeContext) -> str:
    return f"""Generate 3 fair resolution options for this dispute.

{_describe(context)}

{_analysis_section(context)}
## Requirements
1. Option A: evidence-based (favour the party with stronger evidence)
2. Option B: compromise (balanced split considering both perspectives)
3. Option C: platform policy (what the marketplace terms would support)

Percentages are integers and customerRefundPercent + vendorPaymentPercent = 100.
Mark exactly ONE option as isRecommended.

## Response format
{{
  "options": [
    {{
      "label": "A",
      "title": "Evidence-Based Resolution",
      "customerRefundPercent": 0-100,
      "vendorPaymentPercent": 0-100,
      "reasoning": "Brief explanation",
      "keyFactors": ["factor1", "factor2"],
      "isRecommended": true
    }}
  ]
}}"""


def build_decision_prompt(context: DisputeContext) -> str:
    if context.options:
        options = "\n".join(
            f"- Option {o.label}: {o.customer_refund_percent}% customer / "
            f"{o.vendor_payment_percent}% vendor - {o.title}"
            for o in context.options
        )
        selected = "\n".join(
            f"- {role} selected: {label or 'None'}" for role, label in sorted(context.selections.items())
        ) or "- Nobody selected an option"
        mediation = f"## Mediation options presented\n{options}\n\n## Party selections\n{selected}"
    else:
        mediation = "No mediation options were generated."

    return f"""Render a FINAL BINDING DECISION for this dispute.

{_describe(context)}

{_analysis_section(context)}
{mediation}

## Your task
Decide how to split the {context.escrow_amount} {context.currency} escrow. The decision is
executed automatically unless a party accepts it sooner or opts out at a penalty.
Percentages are integers and must sum to 100.

## Response format
{{
  "customerRefundPercent": 0-100,
  "vendorPaymentPercent": 0-100,
  "decisionSummary": "One paragraph summary",
  "fullReasoning": "Detailed explanation",
  "keyFactors": ["factor1", "factor2", "factor3"]
}}"""


def parse_json_content(content: str | None) -> dict[str, Any]:
    """Pull the JSON object out of a model reply, tolerating code fences."""
    text = content or ""
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    try:
        data = json.loads(text.strip())
    except (json.JSONDecodeError, IndexError) as e:
        raise OracleUnavailable(f"mediator returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise OracleUnavailable("mediator returned a non-object JSON document")
    return data


class LLMMediationOracle(MediationOracle):
    """Mediator backed by a chat model through LangChain."""

    def __init__(self, llm: LLMClient | None = None):
        self._llm = llm

    @property
    def llm(self) -> LLMClient:
        if self._llm is None:
            self._llm = get_llm_client()
        return self._llm

    async def _ask(self, prompt: str, temperature: float) -> dict[str, Any]:
        try:
            response = await self.llm.chat_completion(
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=temperature,
                json_mode=True,
            )
        except OracleUnavailable:
            raise
        except Exception as e:
            raise OracleUnavailable(str(e)) from e
        log.debug(f"Mediator usage: {response.usage}")
        return parse_json_content(response.content)

    async def analyze_dispute(self, context: DisputeContext) -> OracleAnalysis:
        data = await self._ask(build_analysis_prompt(context), temperature=0.3)
        analysis = validate_analysis(
            OracleAnalysis(
                evidence_analysis=data.get("evidenceAnalysis"),
                description_analysis=data.get("descriptionAnalysis"),
                behavior_analysis=data.get("behaviorAnalysis"),
                overall_assessment=data.get("overallAssessment"),
                ai_model=self.llm.model_name,
            )
        )
        log.info(f"Mediator analysed dispute {context.dispute_id}")
        return analysis

    async def generate_options(self, context: DisputeContext) -> list[OracleOption]:
        data = await self._ask(build_options_prompt(context), temperature=0.5)
        try:
            options = [
                OracleOption(
                    label=str(raw["label"]).strip().upper(),
                    title=str(raw.get("title") or f"Option {raw['label']}"),
                    customer_refund_percent=raw["customerRefundPercent"],
                    vendor_payment_percent=raw["vendorPaymentPercent"],
                    reasoning=str(raw.get("reasoning", "")),
                    key_factors=[str(f) for f in raw.get("keyFactors") or []],
                    is_recommended=bool(raw.get("isRecommended", False)),
                )
                for raw in data.get("options", [])
            ]
        except (KeyError, TypeError) as e:
            raise OracleUnavailable(f"mediator options are incomplete: {e}") from e

        options = validate_options(options)
        log.info(f"Mediator proposed {len(options)} options for dispute {context.dispute_id}")
        return options

    async def generate_decision(self, context: DisputeContext) -> OracleDecision:
        data = await self._ask(build_decision_prompt(context), temperature=0.2)
        try:
            decision = OracleDecision(
                customer_refund_percent=data["customerRefundPercent"],
                vendor_payment_percent=data["vendorPaymentPercent"],
                decision_summary=str(data.get("decisionSummary", "")),
                full_reasoning=str(data.get("fullReasoning", "")),
                key_factors=[str(f) for f in data.get("keyFactors") or []],
            )
        except (KeyError, TypeError) as e:
            raise OracleUnavailable(f"mediator decision is incomplete: {e}") from e

        decision = validate_decision(decision)
        log.info(
            f"Mediator decided dispute {context.dispute_id}: "
            f"customer {decision.customer_refund_percent}% / vendor {decision.vendor_payment_percent}%"
        )
        return decision
