"""Tool catalogue offered to the language model during one turn."""

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Type
from uuid import UUID

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from concierge.logging_config import get_logger
from concierge.schemas.tools import (
    CancelAppointmentArgs,
    CheckAvailabilityArgs,
    CreateAppointmentArgs,
    GetMyFutureAppointmentsArgs,
    GetProfessionalAvailabilityRulesArgs,
    GetProfessionalsArgs,
    GetServicesArgs,
    IdentifyCustomerArgs,
    QualifyLeadArgs,
    RescheduleAppointmentArgs,
    SaveCustomerPreferenceArgs,
)
from concierge.services.result import Result
from concierge.services.tools.scheduling_client import SchedulingClient

logger = get_logger("tools")


@dataclass
class ToolContext:
    """Identity bound from the job; the model cannot override it."""

    salon_id: UUID
    customer_phone: str
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = None
    listed_appointment_ids: set[str] = field(default_factory=set)


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[["ToolRegistry", Any], Awaitable[Result[Any]]]

    def definition(self) -> dict:
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return {
            "type": "function",
            "function": {"name": self.name, "description": self.description, "parameters": schema},
        }


def _collect_appointment_ids(value: Any) -> set[str]:
    items = value.get("appointments", []) if isinstance(value, dict) else value
    ids = set()
    for item in items or []:
        if isinstance(item, dict) and item.get("id"):
            ids.add(str(item["id"]))
    return ids


async def _identify_customer(registry: "ToolRegistry", args: IdentifyCustomerArgs) -> Result[Any]:
    ctx = registry.context
    result = await registry.client.identify_customer(ctx.salon_id, ctx.customer_phone, args.name or ctx.customer_name)
    if result.ok and isinstance(result.value, dict) and result.value.get("id"):
        try:
            ctx.customer_id = UUID(str(result.value["id"]))
        except ValueError:
            pass
        ctx.customer_name = result.value.get("name") or ctx.customer_name
    return result


async def _get_services(registry: "ToolRegistry", args: GetServicesArgs) -> Result[Any]:
    return await registry.client.get_services(registry.context.salon_id, args.include_inactive)


async def _get_professionals(registry: "ToolRegistry", args: GetProfessionalsArgs) -> Result[Any]:
    return await registry.client.get_professionals(registry.context.salon_id, args.include_inactive)


async def _check_availability(registry: "ToolRegistry", args: CheckAvailabilityArgs) -> Result[Any]:
    return await registry.client.check_availability(
        registry.context.salon_id,
        args.date.isoformat(),
        professional_id=args.professional_id,
        service_id=args.service_id,
        service_duration=args.service_duration,
    )


async def _create_appointment(registry: "ToolRegistry", args: CreateAppointmentArgs) -> Result[Any]:
    return await registry.client.create_appointment(
        registry.context.salon_id,
        registry.context.customer_phone,
        professional_id=args.professional_id,
        service_id=args.service_id,
        date=args.date.isoformat(),
        notes=args.notes,
    )


async def _get_my_future_appointments(registry: "ToolRegistry", args: GetMyFutureAppointmentsArgs) -> Result[Any]:
    result = await registry.client.get_future_appointments(registry.context.salon_id, registry.context.customer_phone)
    if result.ok:
        registry.context.listed_appointment_ids |= _collect_appointment_ids(result.value)
    return result


def _require_listed(registry: "ToolRegistry", appointment_id: str) -> Optional[Result[Any]]:
    if appointment_id not in registry.context.listed_appointment_ids:
        return Result.failure(
            "appointment_id must come from get_my_future_appointments called earlier in this conversation turn",
            code="precondition_failed",
        )
    return None


async def _reschedule_appointment(registry: "ToolRegistry", args: RescheduleAppointmentArgs) -> Result[Any]:
    refused = _require_listed(registry, args.appointment_id)
    if refused:
        return refused
    return await registry.client.reschedule_appointment(
        registry.context.salon_id, args.appointment_id, args.new_date.isoformat()
    )


async def _cancel_appointment(registry: "ToolRegistry", args: CancelAppointmentArgs) -> Result[Any]:
    refused = _require_listed(registry, args.appointment_id)
    if refused:
        return refused
    return await registry.client.cancel_appointment(registry.context.salon_id, args.appointment_id, args.reason)


async def _save_customer_preference(registry: "ToolRegistry", args: SaveCustomerPreferenceArgs) -> Result[Any]:
    ctx = registry.context
    if not ctx.customer_id:
        return Result.failure("customer is not identified yet, call identify_customer first", code="precondition_failed")
    return await registry.client.save_customer_preference(ctx.salon_id, ctx.customer_id, args.key, args.value)


async def _qualify_lead(registry: "ToolRegistry", args: QualifyLeadArgs) -> Result[Any]:
    return await registry.client.qualify_lead(
        registry.context.salon_id, registry.context.customer_phone, args.interest, args.notes
    )


async def _get_professional_availability_rules(
    registry: "ToolRegistry", args: GetProfessionalAvailabilityRulesArgs
) -> Result[Any]:
    return await registry.client.get_professional_availability_rules(registry.context.salon_id, args.professional_name)


TOOL_SPECS = [
    ToolSpec(
        "identify_customer",
        "Identifica o cliente pelo telefone da conversa e cadastra se ainda não existir.",
        IdentifyCustomerArgs,
        _identify_customer,
    ),
    ToolSpec("get_services", "Lista os serviços do salão com preço e duração.", GetServicesArgs, _get_services),
    ToolSpec("get_professionals", "Lista os profissionais do salão.", GetProfessionalsArgs, _get_professionals),
    ToolSpec(
        "check_availability",
        "Verifica horários livres para uma data, opcionalmente por profissional e serviço.",
        CheckAvailabilityArgs,
        _check_availability,
    ),
    ToolSpec(
        "create_appointment",
        "Cria um agendamento para o cliente desta conversa.",
        CreateAppointmentArgs,
        _create_appointment,
    ),
    ToolSpec(
        "get_my_future_appointments",
        "Lista os próximos agendamentos do cliente. Obrigatório antes de remarcar ou cancelar.",
        GetMyFutureAppointmentsArgs,
        _get_my_future_appointments,
    ),
    ToolSpec(
        "reschedule_appointment",
        "Remarca um agendamento listado por get_my_future_appointments.",
        RescheduleAppointmentArgs,
        _reschedule_appointment,
    ),
    ToolSpec(
        "cancel_appointment",
        "Cancela um agendamento listado por get_my_future_appointments.",
        CancelAppointmentArgs,
        _cancel_appointment,
    ),
    ToolSpec(
        "save_customer_preference",
        "Salva uma preferência do cliente (profissional favorito, horário preferido, etc).",
        SaveCustomerPreferenceArgs,
        _save_customer_preference,
    ),
    ToolSpec("qualify_lead", "Registra o nível de interesse do cliente.", QualifyLeadArgs, _qualify_lead),
    ToolSpec(
        "get_professional_availability_rules",
        "Consulta os dias e horários de trabalho recorrentes de um profissional.",
        GetProfessionalAvailabilityRulesArgs,
        _get_professional_availability_rules,
    ),
]


class ToolRegistry:
    def __init__(self, client: SchedulingClient, context: ToolContext, specs: Optional[list[ToolSpec]] = None):
        self.client = client
        self.context = context
        self.specs = {spec.name: spec for spec in (specs or TOOL_SPECS)}

    def definitions(self) -> list[dict]:
        return [spec.definition() for spec in self.specs.values()]

    async def execute(self, name: str, raw_arguments: str) -> Result[Any]:
        spec = self.specs.get(name)
        if spec is None:
            return Result.failure(f"unknown tool {name}", code="unknown_tool")

        try:
            payload = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError as exc:
            return Result.failure(f"invalid JSON arguments: {exc}", code="invalid_arguments")

        try:
            args = spec.args_model.model_validate(payload)
        except PydanticValidationError as exc:
            return Result.failure(f"invalid arguments: {exc.errors()[:3]}", code="invalid_arguments")

        result = await spec.handler(self, args)
        logger.info(
            "Tool executed",
            extra={
                "context": {
                    "tool": name,
                    "ok": result.ok,
                    "error_code": result.error_code,
                    "salon_id": str(self.context.salon_id),
                }
            },
        )
        return result
