"""Issuing company as seen by the issuance flow."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

_IBGE_CODE = re.compile(r"^\d{7}$")


class TaxRegime(str, Enum):
    MEI = "mei"
    SIMPLES_NACIONAL = "simples_nacional"
    LUCRO_PRESUMIDO = "lucro_presumido"
    LUCRO_REAL = "lucro_real"

    @classmethod
    def parse(cls, raw: str | None) -> TaxRegime:
        """Map stored spellings ("Simples Nacional", "MEI") to the enum."""
        key = (raw or "").strip().lower().replace(" ", "_")
        for member in cls:
            if member.value == key:
                return member
        return cls.SIMPLES_NACIONAL


@dataclass(frozen=True)
class Company:
    """Company record plus its fiscal-provider state.

    Attributes:
        provider_id: Registration id at the fiscal provider (None: not registered).
        municipality_code: 7-digit IBGE code of the company's city.
        municipality_supported: Last known provider support (None: unknown).
        certificate_expires_at: Digital certificate expiry (None: no certificate).
        municipal_credentials: Company issues with municipal login instead of a certificate.
    """

    id: str
    owner_id: str
    name: str
    cnpj: str
    regime: TaxRegime
    municipality: str | None = None
    municipality_code: str | None = None
    provider_id: str | None = None
    fiscal_status: str | None = None
    municipality_supported: bool | None = None
    municipality_checked_at: datetime | None = None
    certificate_expires_at: datetime | None = None
    municipal_credentials: bool = False

    @property
    def has_valid_municipality_code(self) -> bool:
        return bool(self.municipality_code and _IBGE_CODE.match(self.municipality_code))
