"""
Candidate idea generators.

A generator turns a ``CandidatePool`` plus the day's ``RegimeState`` into a
list of raw ideas. Its output is untrusted and always goes through
``signal_desk.ideas.normalizer`` before anything else reads it.

Generators
----------
FallbackIdeaGenerator
    Deterministic ideas straight from the candidate pool (≤4 strategic,
    ≤3 opportunistic, ≤4 risk). Used when no API key is configured and as
    the recovery path of the HTTP generator.

AnthropicIdeaGenerator
    Posts a prompt to the Anthropic Messages API via ``httpx`` and extracts
    a JSON array from the reply text.

Result modes
------------
    ai              ideas parsed from the model reply
    fallback        no API key; deterministic ideas
    fallback_parse  reply had no usable JSON array; deterministic ideas
    fallback_error  HTTP/transport failure and ``fallback_on_error`` is set
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from signal_desk.config import GeneratorConfig
from signal_desk.ideas.candidates import Candidate, CandidatePool
from signal_desk.models.regime import RegimeState

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

MODE_AI = "ai"
MODE_FALLBACK = "fallback"
MODE_FALLBACK_PARSE = "fallback_parse"
MODE_FALLBACK_ERROR = "fallback_error"


@dataclass
class GeneratorResult:
    """Raw generator output for one run.

    Attributes:
        ideas:       Untrusted idea mappings, in generator order.
        model:       Model name, if a model was (or would have been) used.
        usage:       Provider token usage block, if any.
        mode:        One of ``ai``, ``fallback``, ``fallback_parse``, ``fallback_error``.
        duration_ms: Wall time of the generation call.
    """

    ideas:       list[Any] = field(default_factory=list)
    model:       Optional[str] = None
    usage:       Optional[dict[str, Any]] = None
    mode:        str = MODE_FALLBACK
    duration_ms: int = 0

    @property
    def is_ai(self) -> bool:
        return self.mode == MODE_AI


class IdeaGenerator(Protocol):
    """Anything that can turn a candidate pool into raw ideas."""

    def generate(self, pool: CandidatePool, regime: RegimeState) -> GeneratorResult:
        ...


# ── Deterministic fallback ─────────────────────────────────────────────────────


def fallback_ideas(pool: CandidatePool) -> list[dict[str, Any]]:
    """Deterministic raw ideas built from the candidate pool."""
    strategic = [_strategic_idea(c) for c in pool.strategic[:4]]
    opportunistic = [_opportunistic_idea(c) for c in pool.opportunistic[:3]]
    risk = [_risk_idea(c) for c in pool.risk[:4]]
    return [*strategic, *opportunistic, *risk]


def _strategic_idea(c: Candidate) -> dict[str, Any]:
    return {
        "category": "strategic",
        "symbol": c.symbol,
        "action": "WATCH",
        "confidence": _clamp01(0.55 + min(0.3, c.score / 300)),
        "timeframe": "months",
        "invalidation": "Close below 50-day SMA.",
        "rationale": ["Trend aligned with current regime", f"Candidate score {c.score:.2f}"],
        "risks": ["Momentum reversal"],
        "tags": ["trend", "regime_aligned"],
        "opportunistic_type": None,
    }


def _opportunistic_idea(c: Candidate) -> dict[str, Any]:
    return {
        "category": "opportunistic",
        "symbol": c.symbol,
        "action": "WATCH",
        "confidence": _clamp01(0.5 + min(0.25, c.score / 200)),
        "timeframe": "weeks",
        "invalidation": "No momentum recovery in 5 sessions.",
        "rationale": ["Setup identified by RSI extremes", f"Candidate score {c.score:.2f}"],
        "risks": ["False reversal"],
        "tags": ["mean_reversion"],
        "opportunistic_type": c.type,
    }


def _risk_idea(c: Candidate) -> dict[str, Any]:
    return {
        "category": "risk",
        "symbol": c.symbol,
        "severity": c.severity or "medium",
        "title": f"{c.symbol or 'Market'} risk",
        "bullets": [c.reason or "Market risk condition", "Monitor volatility and downside follow-through"],
        "tags": ["risk"],
    }


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class FallbackIdeaGenerator:
    """Generator used when no API key is configured."""

    def __init__(self, model: Optional[str] = None) -> None:
        self.model = model

    def generate(self, pool: CandidatePool, regime: RegimeState) -> GeneratorResult:
        ideas = fallback_ideas(pool)
        logger.info("Fallback generator produced %d ideas from %d candidates", len(ideas), pool.total)
        return GeneratorResult(ideas=ideas, model=self.model, mode=MODE_FALLBACK)


# ── Anthropic Messages API ─────────────────────────────────────────────────────


def build_ideas_prompt(pool: CandidatePool, regime: RegimeState) -> str:
    """Prompt asking the model to pick and write up ideas from the pool."""
    candidates = pool.to_dict()
    risk_flags = ", ".join(regime.risk_flags) or "None"
    return f"""You are a professional market analyst for a macro-first investment companion.

Current market regime: {regime.regime} ({regime.volatility_regime})
Leadership: {", ".join(regime.leadership)}
Risk flags: {risk_flags}
Confidence: {regime.confidence}

Based on the pre-selected candidates below, generate structured investment ideas.

STRATEGIC CANDIDATES (pick 2-4 best, regime-aligned):
{json.dumps(candidates["strategic"], indent=2)}

OPPORTUNISTIC CANDIDATES (pick 1-3 best, clearly labeled):
{json.dumps(candidates["opportunistic"], indent=2)}

RISK ALERTS (pick 2-4 most relevant):
{json.dumps(candidates["risk"], indent=2)}

Each idea is a JSON object with "category" ("strategic", "opportunistic" or "risk").
Strategic/opportunistic ideas carry "symbol", "action" (BUY, SELL or WATCH),
"confidence" (0-1), "timeframe" (weeks or months), "invalidation", "rationale"
(list), "risks" (list), "tags" (list) and, for opportunistic ideas,
"opportunistic_type". Risk ideas carry "symbol", "severity" (low, medium or high),
"title", "bullets" (list) and "tags" (list).

RULES:
- Never include price targets or timing instructions
- Never guarantee outcomes
- Never suggest leverage
- Be factual, direct, professional
- Rationale must be data-driven (reference RSI, trend, volatility)
- Each invalidation must be specific and measurable
- Return ONLY a JSON array of ideas, nothing else"""


def extract_json_array(text: Optional[str]) -> list[Any]:
    """Pull a JSON array out of a model reply.

    Code fences are stripped first. If the whole reply is not valid JSON, the
    span between the first ``[`` and the last ``]`` is tried. A reply that
    parses to anything other than a list yields ``[]``.
    """
    raw = (text or "").strip().replace("```json", "").replace("```", "")
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        start = raw.find("[")
        end = raw.rfind("]")
        if start < 0 or end <= start:
            return []
        try:
            parsed = json.loads(raw[start:end + 1])
        except ValueError:
            return []
    return parsed if isinstance(parsed, list) else []


class AnthropicIdeaGenerator:
    """Generates ideas with the Anthropic Messages API.

    Usage::

        generator = AnthropicIdeaGenerator(config.generator)
        result = generator.generate(pool, regime)

    Args:
        config: Generator settings; ``api_key`` must be set.
        client: Optional pre-built ``httpx.Client`` (tests pass one backed by
            ``httpx.MockTransport``). When omitted a client is created per call.
    """

    def __init__(self, config: GeneratorConfig, client: Optional[httpx.Client] = None) -> None:
        if not config.api_key:
            raise ValueError("AnthropicIdeaGenerator requires generator.api_key.")
        self.config = config
        self._client = client

    def generate(self, pool: CandidatePool, regime: RegimeState) -> GeneratorResult:
        """Call the model and parse its reply.

        Raises:
            httpx.HTTPError: On HTTP/transport failure when
                ``fallback_on_error`` is disabled.
        """
        prompt = build_ideas_prompt(pool, regime)
        started = time.monotonic()

        try:
            payload = self._post(prompt)
        except (httpx.HTTPError, ValueError) as exc:
            duration_ms = _elapsed_ms(started)
            if not self.config.fallback_on_error:
                raise
            logger.warning(
                "Idea generation failed (%s: %s); using fallback ideas.",
                type(exc).__name__, exc,
            )
            return GeneratorResult(
                ideas=fallback_ideas(pool),
                model=self.config.model,
                mode=MODE_FALLBACK_ERROR,
                duration_ms=duration_ms,
            )

        duration_ms = _elapsed_ms(started)
        usage = payload.get("usage") if isinstance(payload.get("usage"), dict) else None
        ideas = extract_json_array(_reply_text(payload))

        if not ideas:
            logger.warning("Model reply contained no JSON idea array; using fallback ideas.")
            return GeneratorResult(
                ideas=fallback_ideas(pool),
                model=self.config.model,
                usage=usage,
                mode=MODE_FALLBACK_PARSE,
                duration_ms=duration_ms,
            )

        logger.info("Model returned %d ideas in %d ms", len(ideas), duration_ms)
        return GeneratorResult(
            ideas=ideas,
            model=self.config.model,
            usage=usage,
            mode=MODE_AI,
            duration_ms=duration_ms,
        )

    def _post(self, prompt: str) -> dict[str, Any]:
        headers = {
            "content-type": "application/json",
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
        }
        body = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }

        if self._client is not None:
            resp = self._client.post(
                self.config.api_url, headers=headers, json=body, timeout=self.config.timeout_s
            )
        else:
            with httpx.Client(timeout=self.config.timeout_s) as client:
                resp = client.post(self.config.api_url, headers=headers, json=body)

        resp.raise_for_status()
        payload = resp.json()
        return payload if isinstance(payload, dict) else {}


def _reply_text(payload: dict[str, Any]) -> str:
    content = payload.get("content")
    if not isinstance(content, list):
        return ""
    return "\n".join(
        str(block.get("text") or "") for block in content if isinstance(block, dict)
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def build_generator(
    config: GeneratorConfig,
    client: Optional[httpx.Client] = None,
) -> IdeaGenerator:
    """HTTP generator when an API key is configured, else the fallback one."""
    if config.api_key:
        return AnthropicIdeaGenerator(config, client=client)
    logger.info("No generator API key configured; using deterministic fallback ideas.")
    return FallbackIdeaGenerator(model=config.model)
