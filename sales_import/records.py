"""Pydantic models for the sale records found in import payloads.

Field aliases follow the keys of the exported JSON. Models are lenient:
unknown keys are ignored and numbers are accepted where strings are expected,
so only structurally broken records fail validation.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .pipelines.normalization import as_positive_int, normalize_email


class RecordModel(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class SaleStatusRecord(RecordModel):
    status_code: int | None = Field(default=None, alias="EstadoComercializacion")
    date: str | None = Field(default=None, alias="Fecha")


class InvoiceStatusRecord(RecordModel):
    status_code: int | None = Field(default=None, alias="estado")
    date: str | None = Field(default=None, alias="Fecha")
    paid_amount: Any = Field(default=None, alias="Pagado")
    observation: str | None = Field(default=None, alias="Observacion")
    actor_email: str | None = Field(default=None, alias="Usuario")

    @field_validator("actor_email", mode="before")
    @classmethod
    def _normalize_actor(cls, v: Any) -> str | None:
        return normalize_email(v)


class InvoiceRecord(RecordModel):
    number: str | None = Field(default=None, alias="numero")
    billing_date: str | None = Field(default=None, alias="FechaFacturacion")
    status_event_count: int | None = Field(default=None, alias="NumeroEstadosFactura")
    status_events: list[InvoiceStatusRecord] = Field(default_factory=list, alias="EstadosFactura")

    @field_validator("number", mode="before")
    @classmethod
    def _strip_number(cls, v: Any) -> Any:
        return v.strip() or None if isinstance(v, str) else v

    @field_validator("status_events", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class SaleRecord(RecordModel):
    """One sale as exported, with its nested status history and invoices."""

    external_sale_id: int = Field(alias="idComercializacion")
    quote_code: str = Field(default="", alias="CodigoCotizacion")
    start_date: str | None = Field(default=None, alias="FechaInicio")
    client_external_id: int | None = Field(default=None, alias="ClienteId")
    client_name: str | None = Field(default=None, alias="NombreCliente")
    creator_email: str | None = Field(default=None, alias="CorreoCreador")
    total_value: Any = Field(default=None, alias="ValorFinalComercializacion")
    quote_value: Any = Field(default=None, alias="ValorFinalCotizacion")
    state_count: int | None = Field(default=None, alias="NumeroEstados")
    status_events: list[SaleStatusRecord] = Field(default_factory=list, alias="Estados")
    invoices: list[InvoiceRecord] = Field(default_factory=list, alias="Facturas")

    @field_validator("client_external_id", mode="before")
    @classmethod
    def _coerce_client_id(cls, v: Any) -> int | None:
        # Non-numeric ids become None; the resolver rejects the record
        return as_positive_int(v)

    @field_validator("creator_email", mode="before")
    @classmethod
    def _normalize_creator(cls, v: Any) -> str | None:
        return normalize_email(v)

    @field_validator("client_name", mode="before")
    @classmethod
    def _strip_name(cls, v: Any) -> Any:
        return v.strip() or None if isinstance(v, str) else v

    @field_validator("status_events", "invoices", mode="before")
    @classmethod
    def _null_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def actor_emails(self) -> list[str]:
        """Actor emails referenced by the invoice status history, in order."""
        return [
            event.actor_email
            for invoice in self.invoices
            for event in invoice.status_events
            if event.actor_email
        ]


def record_key(raw: Any) -> Any:
    """Natural key of a raw record for log messages, even when it fails validation."""
    if isinstance(raw, dict):
        return raw.get("idComercializacion", "unknown")
    return "unknown"
