"""Tool-augmented language-model turn with a hard timeout and a recovery pass."""

import asyncio
import json
import re
from dataclasses import dataclass, field
from typing import List, Optional

from concierge.config import settings
from concierge.errors import AIGenerationError
from concierge.logging_config import get_logger
from concierge.models import Customer, Salon
from concierge.services.knowledge_service import format_knowledge_context, search_knowledge
from concierge.services.llm import LLMProvider, OpenAIProvider, ToolCall
from concierge.services.prompt_service import build_system_prompt
from concierge.services.result import Result
from concierge.services.tools import ToolRegistry

logger = get_logger("ai_service")

FALLBACK_REPLY = "Desculpe, tive uma instabilidade para concluir seu pedido agora. Pode tentar novamente em instantes?"
MAX_TOOL_ERROR_CHARS = 200
RECOVERY_NOTE = (
    "ATENÇÃO: algumas ações não funcionaram nesta conversa.\n"
    "Resumo técnico interno (NÃO repita para o cliente):\n{errors}\n\n"
    "Responda ao cliente com empatia, em uma ou duas frases, sem detalhes técnicos, sem IDs e sem códigos. "
    "Diga o que não foi possível fazer agora e ofereça uma alternativa (tentar outro horário, aguardar ou falar com a equipe)."
)

_UUID_RE = re.compile(r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b")
_URL_RE = re.compile(r"https?://\S+")
_PATH_RE = re.compile(r"(?:/[\w.\-]+){2,}")
_LONG_NUMBER_RE = re.compile(r"\d{6,}")


@dataclass
class TurnResult:
    text: str
    usage: dict = field(default_factory=dict)
    tool_errors: List[str] = field(default_factory=list)
    steps: int = 0
    recovered: bool = False
    used_fallback: bool = False


def get_llm_provider() -> OpenAIProvider:
    return OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.openai_model)


def sanitize_tool_error(error: Optional[str]) -> str:
    """Strip identifiers, URLs and paths, then truncate."""
    text = error or "erro desconhecido"
    text = _UUID_RE.sub("[id]", text)
    text = _URL_RE.sub("[url]", text)
    text = _PATH_RE.sub("[path]", text)
    text = _LONG_NUMBER_RE.sub("[n]", text)
    text = " ".join(text.split())
    if len(text) > MAX_TOOL_ERROR_CHARS:
        text = text[: MAX_TOOL_ERROR_CHARS - 3] + "..."
    return text


def _add_usage(total: dict, usage: Optional[dict]) -> None:
    for key in ("prompt_tokens", "completion_tokens", "total_tokens"):
        total[key] = total.get(key, 0) + int((usage or {}).get(key) or 0)


async def _execute_tool(registry: ToolRegistry, call: ToolCall) -> Result:
    try:
        return await registry.execute(call.name, call.arguments)
    except Exception as exc:
        logger.error(
            "Tool raised",
            exc_info=True,
            extra={"context": {"tool": call.name, "error": str(exc)}},
        )
        return Result.failure(f"{call.name} failed: {exc}", code="tool_exception")


async def run_tool_loop(
    provider: LLMProvider,
    messages: List[dict],
    registry: Optional[ToolRegistry],
    *,
    max_steps: int,
    usage: dict,
    tool_errors: List[str],
) -> tuple[str, int]:
    """Call the model up to `max_steps` times, executing requested tools between calls.

    The last allowed step is made without tools so the model has to answer in text.
    Returns (text, steps_used).
    """
    definitions = registry.definitions() if registry else None
    budget = max(max_steps, 1)
    text = ""
    steps = 0
    for step in range(budget):
        is_last = step == budget - 1
        response = await provider.generate(
            messages,
            max_tokens=settings.ai_max_tokens,
            tools=None if is_last else definitions,
        )
        steps += 1
        _add_usage(usage, response.usage)
        usage["model"] = response.model
        text = response.content or ""

        if not response.tool_calls or registry is None or is_last:
            break

        messages.append(
            {
                "role": "assistant",
                "content": response.content or None,
                "tool_calls": [
                    {"id": call.id, "type": "function", "function": {"name": call.name, "arguments": call.arguments}}
                    for call in response.tool_calls
                ],
            }
        )
        for call in response.tool_calls:
            result = await _execute_tool(registry, call)
            if not result.ok:
                tool_errors.append(f"{call.name}: {sanitize_tool_error(result.error)}")
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result.to_payload(), ensure_ascii=False, default=str),
                }
            )
    return text.strip(), steps


async def _recovery_pass(
    provider: LLMProvider,
    system_prompt: str,
    history: List[dict],
    user_text: str,
    draft: str,
    tool_errors: List[str],
    usage: dict,
) -> str:
    note = RECOVERY_NOTE.format(errors="\n".join(f"- {e}" for e in tool_errors))
    messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_text}]
    if draft:
        messages.append({"role": "assistant", "content": draft})
    messages.append({"role": "system", "content": note})
    try:
        text, _ = await run_tool_loop(provider, messages, None, max_steps=1, usage=usage, tool_errors=[])
    except AIGenerationError as exc:
        logger.warning("Recovery pass failed", extra={"context": {"error": str(exc)}})
        return ""
    return text


async def _generate(
    provider: LLMProvider,
    system_prompt: str,
    history: List[dict],
    user_text: str,
    registry: Optional[ToolRegistry],
    max_steps: int,
) -> TurnResult:
    usage: dict = {}
    tool_errors: List[str] = []
    messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_text}]

    text, steps = await run_tool_loop(
        provider, messages, registry, max_steps=max_steps, usage=usage, tool_errors=tool_errors
    )
    result = TurnResult(text=text, usage=usage, tool_errors=tool_errors, steps=steps)

    if tool_errors:
        healed = await _recovery_pass(provider, system_prompt, history, user_text, text, tool_errors, usage)
        result.steps += 1
        if healed:
            result.text = healed
            result.recovered = True

    if not result.text:
        result.text = FALLBACK_REPLY
        result.used_fallback = True

    usage["steps"] = result.steps
    return result


async def run_turn(
    *,
    system_prompt: str,
    history: List[dict],
    user_text: str,
    registry: Optional[ToolRegistry],
    provider: Optional[LLMProvider] = None,
    timeout_seconds: Optional[float] = None,
    max_steps: Optional[int] = None,
) -> TurnResult:
    """Run one AI turn. The returned text is never empty.

    Raises AIGenerationError (not retryable) on timeout or provider failure.
    """
    provider = provider or get_llm_provider()
    timeout_seconds = timeout_seconds or settings.ai_timeout_seconds
    max_steps = max_steps or settings.ai_max_steps

    try:
        return await asyncio.wait_for(
            _generate(provider, system_prompt, history, user_text, registry, max_steps),
            timeout=timeout_seconds,
        )
    except asyncio.TimeoutError as exc:
        logger.error("AI turn timed out", extra={"context": {"timeout_seconds": timeout_seconds}})
        raise AIGenerationError("AI turn timed out", code="AI_TIMEOUT") from exc


async def build_turn_prompt(
    salon: Salon,
    *,
    user_text: str,
    customer: Optional[Customer] = None,
    customer_name: Optional[str] = None,
    is_new_customer: bool = False,
) -> str:
    knowledge_context = ""
    try:
        hits = await search_knowledge(user_text, salon.id)
        knowledge_context = format_knowledge_context(hits)
    except Exception as exc:
        logger.warning(
            "Knowledge search failed, continuing without it",
            extra={"context": {"salon_id": str(salon.id), "error": str(exc)}},
        )

    return build_system_prompt(
        salon,
        customer=customer,
        customer_name=customer_name,
        is_new_customer=is_new_customer,
        knowledge_context=knowledge_context,
    )
