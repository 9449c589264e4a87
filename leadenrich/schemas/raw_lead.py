# leadenrich/schemas/raw_lead.py
from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class RawLeadRecord(BaseModel):
    """One row of a business-registry export.

    Accepts either snake_case keys or the export's original column headers.
    """

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    tax_id: str = Field(min_length=1, max_length=32, validation_alias=_alias("tax_id", "CNPJ", "cnpj"))
    company_name: Optional[str] = Field(default=None, max_length=255, validation_alias=_alias("company_name", "Razão social"))
    trade_name: Optional[str] = Field(default=None, max_length=255, validation_alias=_alias("trade_name", "Nome Fantasia"))
    parent_name: Optional[str] = Field(default=None, max_length=255, validation_alias=_alias("parent_name", "Nome matriz"))
    municipality: Optional[str] = Field(default=None, max_length=128, validation_alias=_alias("municipality", "Município"))
    district: Optional[str] = Field(default=None, max_length=128, validation_alias=_alias("district", "Distrito"))
    subdistrict: Optional[str] = Field(default=None, max_length=128, validation_alias=_alias("subdistrict", "Subdistrito"))
    postal_code: Optional[str] = Field(default=None, max_length=16, validation_alias=_alias("postal_code", "CEP"))
    neighborhood: Optional[str] = Field(default=None, max_length=128, validation_alias=_alias("neighborhood", "Bairro"))
    street: Optional[str] = Field(default=None, max_length=255, validation_alias=_alias("street", "Endereço cadastral"))
    suggested_street: Optional[str] = Field(default=None, max_length=255, validation_alias=_alias("suggested_street", "Endereço sugerido"))
    raw_coordinates: Optional[str] = Field(default=None, max_length=64, validation_alias=_alias("raw_coordinates", "Coordenadas"))
    street_view_url: Optional[str] = Field(default=None, validation_alias=_alias("street_view_url", "Street View"))

    @field_validator("tax_id", mode="before")
    def coerce_tax_id(cls, v):
        # Spreadsheet exports deliver these as numbers and drop leading zeros
        if isinstance(v, (int, float)):
            return str(int(v)).zfill(14)
        return v

    @field_validator("postal_code", mode="before")
    def coerce_postal_code(cls, v):
        if isinstance(v, (int, float)):
            return str(int(v)).zfill(8)
        return v

    @field_validator("*", mode="before")
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

