"""Read path: fetch one imported sale back in the export JSON shape."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import models
from .normalization import format_export_date

logger = logging.getLogger(__name__)


def _number(value: Any) -> Any:
    # Numeric columns come back as Decimal, the export format uses plain numbers
    if value is None:
        return None
    value = Decimal(str(value))
    return int(value) if value == value.to_integral_value() else float(value)


async def fetch_sale_document(session: AsyncSession, external_sale_id: int) -> dict[str, Any] | None:
    """Rebuild a stored sale with its status history and invoices.

    Returns:
        The sale keyed like the import payload, or None if it does not exist
    """
    sale = (
        await session.execute(
            select(models.Sale).where(models.Sale.external_sale_id == external_sale_id)
        )
    ).scalar_one_or_none()
    if sale is None:
        logger.info(f"Sale {external_sale_id} not found")
        return None

    status_events = (
        await session.execute(
            select(models.SaleStatusEvent)
            .where(models.SaleStatusEvent.sale_id == sale.id)
            .order_by(models.SaleStatusEvent.event_date, models.SaleStatusEvent.id)
        )
    ).scalars().all()

    invoices = (
        await session.execute(
            select(models.Invoice)
            .where(models.Invoice.sale_external_id == external_sale_id)
            .order_by(models.Invoice.id)
        )
    ).scalars().all()

    invoice_events = (
        await session.execute(
            select(models.InvoiceStatusEvent)
            .where(models.InvoiceStatusEvent.sale_external_id == external_sale_id)
            .order_by(models.InvoiceStatusEvent.event_date, models.InvoiceStatusEvent.id)
        )
    ).scalars().all()

    events_by_invoice: dict[str, list[dict[str, Any]]] = {}
    for event in invoice_events:
        events_by_invoice.setdefault(event.invoice_number, []).append({
            "estado": event.status_code,
            "Fecha": format_export_date(event.event_date),
            "Pagado": event.paid,
            "Observacion": event.observation,
            "Usuario": event.actor_email,
        })

    return {
        "idComercializacion": sale.external_sale_id,
        "CodigoCotizacion": sale.quote_code,
        "FechaInicio": format_export_date(sale.start_date),
        "ClienteId": sale.client_external_id,
        "NombreCliente": sale.client_name,
        "CorreoCreador": sale.creator_email,
        "ValorFinalComercializacion": _number(sale.total_value),
        "ValorFinalCotizacion": _number(sale.quote_value),
        "NumeroEstados": sale.state_count,
        "EstadoActual": sale.current_status_code,
        "Estados": [
            {
                "EstadoComercializacion": event.status_code,
                "Fecha": format_export_date(event.event_date),
            }
            for event in status_events
        ],
        "Facturas": [
            {
                "numero": invoice.number,
                "FechaFacturacion": format_export_date(invoice.billing_date),
                "NumeroEstadosFactura": invoice.status_event_count,
                "EstadosFactura": events_by_invoice.get(invoice.number, []),
            }
            for invoice in invoices
        ],
    }
