"""Shared fixtures: a throwaway SQLite store per test and sale payload builders."""

from __future__ import annotations

import json
from typing import Any, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sales_import.config import ImportSettings
from sales_import.models import Base
from sales_import.parsers import SourceFile


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed aiosqlite engine with the full schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sales_import.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@pytest.fixture
def import_settings() -> ImportSettings:
    return ImportSettings(chunk_size=500, preload_attempts=1)


@pytest.fixture
def make_sale() -> Callable[..., dict[str, Any]]:
    """Build one exported sale record; keyword overrides replace top-level keys."""

    def _make_sale(external_sale_id: int, **overrides: Any) -> dict[str, Any]:
        sale = {
            "idComercializacion": external_sale_id,
            "CodigoCotizacion": f"COT-{external_sale_id}",
            "FechaInicio": "10/01/2024",
            "ClienteId": 500,
            "NombreCliente": "Cliente Base",
            "CorreoCreador": "vendedor@empresa.cl",
            "ValorFinalComercializacion": 120000,
            "ValorFinalCotizacion": 118000.5,
            "NumeroEstados": 1,
            "Estados": [{"EstadoComercializacion": 0, "Fecha": "10/01/2024"}],
            "Facturas": [],
        }
        sale.update(overrides)
        return sale

    return _make_sale


@pytest.fixture
def make_source() -> Callable[..., SourceFile]:
    """Wrap a payload (any JSON value) or raw bytes as an import file."""

    def _make_source(payload: Any, name: str = "ventas.json") -> SourceFile:
        content = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        return SourceFile.from_bytes(name, content)

    return _make_source


@pytest.fixture
def acme_sale() -> dict[str, Any]:
    """The single-sale scenario: client 334 with one invoice and one status each."""
    return {
        "idComercializacion": 9001,
        "CodigoCotizacion": "COT-1",
        "FechaInicio": "15/01/2024",
        "ClienteId": 334,
        "NombreCliente": "Acme",
        "ValorFinalComercializacion": 1000,
        "ValorFinalCotizacion": 1000,
        "NumeroEstados": 1,
        "Estados": [{"EstadoComercializacion": 1, "Fecha": "20/01/2024"}],
        "Facturas": [
            {
                "numero": "F-1",
                "FechaFacturacion": "25/01/2024",
                "NumeroEstadosFactura": 1,
                "EstadosFactura": [
                    {
                        "estado": 3,
                        "Fecha": "01/02/2024",
                        "Pagado": 1000,
                        "Observacion": "Pago total",
                        "Usuario": "a.b@x.com",
                    }
                ],
            }
        ],
    }
