"""AI infrastructure builder backed by OpenAI chat completions.

Questionnaire answers are clamped to what the organization's plan allows,
sent to the model with a short system prompt, and the JSON reply is
stored with its token accounting.  Each generation counts against the
plan's per-minute and per-day AI request caps and is billed as an
``ai_usage`` event.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.errors import NotFoundError
from velocity_core.metering.events import UsageCounter
from velocity_core.plans.catalog import Capability, LimitName, PlanDefinition, get_plan
from velocity_core.plans.entitlements import EntitlementRequest
from velocity_core.state.repository import AIBuilderRepository, BillingEventRepository, UsageLogRepository
from velocity_core.state.tables import AIBuilderBuildTable

from velocity_api.middleware.prometheus import AI_BUILDS_TOTAL
from velocity_api.services.entitlement_service import EntitlementService
from velocity_api.services.file_service import FileService
from velocity_api.services.usage_service import UsageService

logger = logging.getLogger(__name__)

# USD per 1K tokens.
INPUT_TOKEN_RATE = Decimal("0.0045")
OUTPUT_TOKEN_RATE = Decimal("0.012")

_BUILD_SYSTEM_PROMPT = (
    "You are DevVelocity, a deterministic infrastructure architect. "
    "Return ONLY a JSON object describing the infrastructure plan with keys "
    '"summary", "providers", "components", "pipelines", "security" and "estimated_monthly_cost". '
    "Never include text outside the JSON object."
)

_UPGRADE_SYSTEM_PROMPT = (
    "You are DevVelocity's configuration upgrader. Improve the given infrastructure configuration "
    "within the limits of the customer's plan. Return ONLY a JSON object with keys "
    '"updated_config", "changes", "upgrade_suggestions" and "warnings".'
)

_REPAIR_SYSTEM_PROMPT = "Repair the following text into a single valid JSON object. Return ONLY the JSON."

# ---------------------------------------------------------------------------
# Prompt input sanitization
# ---------------------------------------------------------------------------

_PROMPT_INJECTION_PATTERNS = re.compile(
    r"<\|system\|>|<\|user\|>|<\|assistant\|>|"
    r"\[INST\]|\[/INST\]|"
    r"<<SYS>>|<</SYS>>|"
    r"<\|im_start\|>|<\|im_end\|>",
    re.IGNORECASE,
)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_MAX_FIELD_SIZE = 20 * 1024


def sanitize_text(value: str, field_name: str = "input") -> str:
    """Strip control characters and chat-role markers, then truncate.

    Newlines and tabs are kept.  Values over 20 KB are cut with a
    ``[TRUNCATED]`` note naming *field_name*.
    """
    cleaned = _CONTROL_CHARS.sub("", value)
    cleaned = _PROMPT_INJECTION_PATTERNS.sub("[FILTERED]", cleaned)
    if len(cleaned) > _MAX_FIELD_SIZE:
        cleaned = cleaned[:_MAX_FIELD_SIZE] + f"\n[TRUNCATED: {field_name} exceeded {_MAX_FIELD_SIZE} bytes]"
    return cleaned


def sanitize_value(value: Any, field_name: str = "answers") -> Any:
    """Recursively sanitize every string inside dicts and lists."""
    if isinstance(value, str):
        return sanitize_text(value, field_name)
    if isinstance(value, dict):
        return {k: sanitize_value(v, f"{field_name}.{k}") for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_value(v, f"{field_name}[{i}]") for i, v in enumerate(value)]
    return value


def extract_json(text: str) -> dict[str, Any] | None:
    """Parse the JSON object between the first ``{`` and the last ``}``.

    Returns ``None`` when no parseable object is present.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def token_cost(prompt_tokens: int, completion_tokens: int) -> Decimal:
    """Price a completion at the input and output per-1K token rates."""
    cost = (
        Decimal(prompt_tokens) / 1000 * INPUT_TOKEN_RATE
        + Decimal(completion_tokens) / 1000 * OUTPUT_TOKEN_RATE
    )
    return cost.quantize(Decimal("0.000001"), rounding=ROUND_HALF_UP)


def clamp_answers(answers: dict[str, Any], plan: PlanDefinition) -> dict[str, Any]:
    """Pin plan-dependent answers to what the plan provides.

    Automation level and SSO level are replaced by the plan's own tiers;
    the provider list is validated separately so that an over-limit
    request is denied rather than silently truncated.
    """
    safe = dict(answers)
    safe["plan"] = plan.tier.value
    safe["automation"] = plan.automation_tier
    safe["sso"] = plan.sso_tier or "none"
    return safe


@dataclass
class Completion:
    """Parsed model output with token accounting across every call made."""

    output: dict[str, Any]
    prompt_tokens: int = 0
    completion_tokens: int = 0
    repaired: bool = False

    @property
    def cost(self) -> Decimal:
        return token_cost(self.prompt_tokens, self.completion_tokens)


def build_to_dict(row: AIBuilderBuildTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "plan": row.plan_id,
        "answers_id": row.answers_id,
        "output": row.output,
        "prompt_tokens": row.prompt_tokens,
        "completion_tokens": row.completion_tokens,
        "cost_usd": str(row.cost_usd),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class AIBuilderService:
    """Plan-gated AI generations for one organization.

    Parameters
    ----------
    session:
        Active database session bound to the organization.
    org_id:
        The organization requesting the generation.
    client:
        Shared ``AsyncOpenAI`` client.
    model:
        Chat model name.
    user_id:
        The acting user.
    """

    def __init__(
        self,
        session: AsyncSession,
        org_id: str,
        client: AsyncOpenAI,
        *,
        model: str,
        user_id: str | None = None,
    ) -> None:
        self._session = session
        self._org_id = org_id
        self._client = client
        self._model = model
        self._user_id = user_id
        self._repo = AIBuilderRepository(session, org_id)
        self._entitlements = EntitlementService(session, org_id)
        self._usage = UsageService(session, org_id)

    # ------------------------------------------------------------------
    # Model calls
    # ------------------------------------------------------------------

    async def _chat(self, system_prompt: str, user_message: str) -> tuple[str, int, int]:
        response = await self._client.chat.completions.create(
            model=self._model,
            temperature=0.1,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        content = response.choices[0].message.content or ""
        usage = response.usage
        prompt_tokens = usage.prompt_tokens if usage else 0
        completion_tokens = usage.completion_tokens if usage else 0
        return content, prompt_tokens, completion_tokens

    async def _complete_json(self, system_prompt: str, user_message: str) -> Completion:
        """Call the model and parse its JSON reply, with one repair pass."""
        raw, prompt_tokens, completion_tokens = await self._chat(system_prompt, user_message)
        result = Completion(output={}, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        parsed = extract_json(raw)
        if parsed is None:
            logger.info("AI output for org %s was not valid JSON; attempting repair", self._org_id)
            fixed, p2, c2 = await self._chat(_REPAIR_SYSTEM_PROMPT, raw)
            result.prompt_tokens += p2
            result.completion_tokens += c2
            result.repaired = True
            parsed = extract_json(fixed)
        result.output = parsed if parsed is not None else {"error": "Malformed JSON could not be repaired", "raw": raw}
        return result

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------

    async def _enforce_ai_caps(self, *extra: EntitlementRequest) -> PlanDefinition:
        """Enforce the AI builder capability and the request-rate caps."""
        now = datetime.now(UTC)
        usage = UsageLogRepository(self._session, self._org_id)
        last_minute = await usage.sum_window(since=now - timedelta(minutes=1))
        last_day = await usage.sum_window(since=now - timedelta(days=1))
        await self._entitlements.enforce(
            EntitlementRequest(capability=Capability.AI_BUILDER),
            *extra,
            EntitlementRequest(limit=LimitName.AI_REQUESTS_PER_MINUTE, quantity=last_minute.ai_requests + 1),
            EntitlementRequest(limit=LimitName.AI_REQUESTS_PER_DAY, quantity=last_day.ai_requests + 1),
        )
        org = await self._entitlements.organization()
        return get_plan(org.plan_id)

    async def _record_spend(self, completion: Completion, *, kind: str, reference: str) -> None:
        amount = completion.cost.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)
        await BillingEventRepository(self._session, self._org_id).append(
            "ai_usage",
            amount,
            details={
                "kind": kind,
                "reference": reference,
                "model": self._model,
                "prompt_tokens": completion.prompt_tokens,
                "completion_tokens": completion.completion_tokens,
                "cost_usd": str(completion.cost),
                "repaired": completion.repaired,
            },
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def save_answers(self, answers: dict[str, Any]) -> str:
        """Persist a questionnaire and return its id."""
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.AI_BUILDER))
        row = await self._repo.save_answers(sanitize_value(answers), user_id=self._user_id)
        return row.id

    async def build(self, answers: dict[str, Any] | None = None, *, answers_id: str | None = None) -> AIBuilderBuildTable:
        """Generate an infrastructure plan from questionnaire answers.

        Either *answers* or a previously saved *answers_id* is required.

        Raises
        ------
        PlanEntitlementError
            If the plan lacks the AI builder, allows fewer providers than
            requested, or the per-minute or per-day cap is reached.
        NotFoundError
            If *answers_id* does not exist.
        """
        if answers is None:
            if answers_id is None:
                raise ValueError("answers or answers_id is required")
            saved = await self._repo.get_answers(answers_id)
            if saved is None:
                raise NotFoundError("AI builder answers", answers_id)
            answers = saved.answers

        providers = answers.get("providers") or []
        if not isinstance(providers, list):
            raise ValueError("providers must be a list")
        plan = await self._enforce_ai_caps(EntitlementRequest(limit=LimitName.PROVIDERS, quantity=len(providers)))

        if answers_id is None:
            answers_id = (await self._repo.save_answers(sanitize_value(answers), user_id=self._user_id)).id

        safe = clamp_answers(sanitize_value(answers), plan)
        try:
            completion = await self._complete_json(_BUILD_SYSTEM_PROMPT, json.dumps(safe, sort_keys=True))
        except Exception:
            AI_BUILDS_TOTAL.labels(outcome="error").inc()
            raise

        row = await self._repo.save_build(
            plan_id=plan.tier.value,
            output=completion.output,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
            cost_usd=completion.cost,
            user_id=self._user_id,
            answers_id=answers_id,
        )
        await self._record_spend(completion, kind="build", reference=row.id)
        await self._usage.log(
            {UsageCounter.AI_REQUESTS: 1, UsageCounter.BUILD_MINUTES: 1},
            metadata={"build_id": row.id},
            source="ai_builder",
        )
        AI_BUILDS_TOTAL.labels(outcome="repaired" if completion.repaired else "ok").inc()
        logger.info(
            "AI build %s for org %s: %d+%d tokens, $%s",
            row.id,
            self._org_id,
            completion.prompt_tokens,
            completion.completion_tokens,
            completion.cost,
        )
        return row

    async def list_builds(self, *, limit: int = 20, offset: int = 0) -> list[AIBuilderBuildTable]:
        return await self._repo.list_builds(limit=limit, offset=offset)

    async def upgrade_file(self, file_id: str) -> dict[str, Any]:
        """Rewrite a portal file with the model and store it as a new version.

        Requires both the file portal and the AI builder.  The file's
        version history gains a snapshot through the normal update path.
        """
        plan = await self._enforce_ai_caps(EntitlementRequest(capability=Capability.FILE_PORTAL))
        files = FileService(self._session, self._org_id, self._user_id)
        current = await files.get(file_id)

        message = json.dumps(
            {
                "plan": plan.tier.value,
                "automation": plan.automation_tier,
                "max_providers": plan.max_providers,
                "filename": current.filename,
                "existing_config": sanitize_text(current.content, "existing_config"),
            }
        )
        try:
            completion = await self._complete_json(_UPGRADE_SYSTEM_PROMPT, message)
        except Exception:
            AI_BUILDS_TOTAL.labels(outcome="error").inc()
            raise

        updated = completion.output.get("updated_config")
        if updated is None:
            raise ValueError("AI upgrade did not return an updated configuration")
        content = updated if isinstance(updated, str) else json.dumps(updated, indent=2)
        row = await files.update(file_id, content, message="AI upgrade")

        await self._record_spend(completion, kind="upgrade_file", reference=file_id)
        await self._usage.log({UsageCounter.AI_REQUESTS: 1}, metadata={"file_id": file_id}, source="ai_builder")
        AI_BUILDS_TOTAL.labels(outcome="repaired" if completion.repaired else "ok").inc()
        return {
            "file_id": file_id,
            "version": row.version,
            "upgraded_config": updated,
            "changes": completion.output.get("changes", []),
            "upgrade_suggestions": completion.output.get("upgrade_suggestions", []),
            "warnings": completion.output.get("warnings", []),
            "cost_usd": str(completion.cost),
        }
