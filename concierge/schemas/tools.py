"""Argument models for the scheduling tools exposed to the language model.

Salon and customer identity are bound from the job, never taken from the model.
"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class IdentifyCustomerArgs(BaseModel):
    name: Optional[str] = Field(default=None, description="Nome do cliente, usado para cadastrar se ainda não existir")


class GetServicesArgs(BaseModel):
    include_inactive: bool = Field(default=False, description="Incluir serviços inativos")


class GetProfessionalsArgs(BaseModel):
    include_inactive: bool = Field(default=False, description="Incluir profissionais inativos")


class CheckAvailabilityArgs(BaseModel):
    date: datetime = Field(description="Data desejada em ISO 8601")
    professional_id: Optional[str] = Field(default=None, description="ID do profissional")
    service_id: Optional[str] = Field(default=None, description="ID do serviço")
    service_duration: Optional[int] = Field(default=None, gt=0, description="Duração do serviço em minutos")


class CreateAppointmentArgs(BaseModel):
    professional_id: str = Field(description="ID do profissional")
    service_id: str = Field(description="ID do serviço")
    date: datetime = Field(description="Data e hora do agendamento em ISO 8601")
    notes: Optional[str] = None


class GetMyFutureAppointmentsArgs(BaseModel):
    pass


class RescheduleAppointmentArgs(BaseModel):
    appointment_id: str = Field(description="ID obtido de get_my_future_appointments")
    new_date: datetime = Field(description="Nova data e hora em ISO 8601")


class CancelAppointmentArgs(BaseModel):
    appointment_id: str = Field(description="ID obtido de get_my_future_appointments")
    reason: Optional[str] = None


class SaveCustomerPreferenceArgs(BaseModel):
    key: str = Field(min_length=1, description="Nome da preferência, por exemplo profissional_favorito")
    value: Union[str, int, float, bool] = Field(description="Valor da preferência")


class QualifyLeadArgs(BaseModel):
    interest: Literal["high", "medium", "low", "none"]
    notes: Optional[str] = None


class GetProfessionalAvailabilityRulesArgs(BaseModel):
    professional_name: str = Field(min_length=1, description="Nome do profissional")
