"""System prompt assembly for one AI turn."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from concierge.models import Customer, Salon

DEFAULT_TIMEZONE = "America/Sao_Paulo"

WEEKDAYS = ["segunda-feira", "terça-feira", "quarta-feira", "quinta-feira", "sexta-feira", "sábado", "domingo"]

PREFERENCE_LABELS = {
    "favorite_professional": "Profissional preferido",
    "favorite_service": "Serviço preferido",
    "allergies": "Alergias conhecidas",
    "notes": "Observações",
}

RULES = """REGRAS:
1. O cliente não sabe IDs de serviço, profissional ou agendamento. Nunca peça IDs.
2. Nunca invente profissionais, serviços, preços ou horários. Use as ferramentas antes de responder sobre eles.
3. Antes de agendar, verifique a disponibilidade com check_availability.
4. Para remarcar ou cancelar, chame get_my_future_appointments primeiro e use o ID retornado.
5. Ofereça duas opções concretas de horário quando o cliente quiser agendar.
6. Responda sempre com texto após usar ferramentas. Seja breve, educado e use português brasileiro.
7. Você está no WhatsApp: use *negrito* com um asterisco, listas com hífen e nada de Markdown com #.
8. Responda apenas sobre o salão, beleza e cuidados pessoais."""


def _salon_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    try:
        tz = ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except ZoneInfoNotFoundError:
        tz = ZoneInfo(DEFAULT_TIMEZONE)
    return (now or datetime.now(timezone.utc)).astimezone(tz)


def format_preferences(preferences: Optional[dict]) -> str:
    if not preferences:
        return ""
    lines = []
    for key, value in preferences.items():
        if value in (None, "", []):
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        lines.append(f"- {PREFERENCE_LABELS.get(key, key.replace('_', ' ').capitalize())}: {value}")
    if not lines:
        return ""
    return "PREFERÊNCIAS DO CLIENTE:\n" + "\n".join(lines)


def format_customer(customer: Optional[Customer], customer_name: Optional[str], is_new_customer: bool) -> str:
    name = (customer.name if customer else None) or customer_name
    kind = "CLIENTE NOVO (primeiro contato)" if is_new_customer else "CLIENTE RECORRENTE"
    lines = ["INFORMAÇÃO DO CLIENTE:", f"- Tipo: {kind}"]
    if name:
        lines.append(f"- Nome: {name}")
    else:
        lines.append("- Nome desconhecido: pergunte educadamente como o cliente prefere ser chamado.")
    return "\n".join(lines)


def build_system_prompt(
    salon: Salon,
    *,
    customer: Optional[Customer] = None,
    customer_name: Optional[str] = None,
    is_new_customer: bool = False,
    knowledge_context: str = "",
    now: Optional[datetime] = None,
) -> str:
    local_now = _salon_now(salon.timezone, now)
    extra_instructions = (salon.settings or {}).get("custom_instructions")

    sections = [
        f"Você é {salon.agent_name}, assistente virtual do salão {salon.name}.\nSeu tom na conversa é: {salon.agent_tone}.",
        "CONTEXTO TEMPORAL:\n"
        f"- Hoje é {WEEKDAYS[local_now.weekday()]}, {local_now.strftime('%d/%m/%Y')}\n"
        f"- Hora atual: {local_now.strftime('%H:%M')}\n"
        "- Use essa data como referência para termos como \"amanhã\" ou \"sábado que vem\".",
        format_customer(customer, customer_name, is_new_customer),
        format_preferences(customer.preferences if customer else None),
    ]
    if knowledge_context:
        sections.append(
            f"CONTEXTO DO SALÃO:\n{knowledge_context}\n"
            "Use essas informações quando a pergunta do cliente for sobre elas."
        )
    if extra_instructions:
        sections.append(f"INSTRUÇÕES DO SALÃO:\n{extra_instructions}")
    sections.append(RULES)

    return "\n\n".join(section for section in sections if section)
