from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cimis_irrigation.constants import LEDGER_DATE_FORMAT


class LedgerEntry(BaseModel):
    """One garden zone row of the irrigation ledger.

    ``PF`` and ``Gallons`` are written as JSON strings by older controllers, so
    numeric strings are accepted alongside numbers.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(alias="Name")
    plant_factor: float = Field(alias="PF", ge=0.0)
    landscape_area_sq_ft: float = Field(alias="LA", ge=0.0)
    relay: int = Field(default=0, alias="Relay", ge=0)
    controller: int = Field(default=0, alias="Controller", ge=0)
    date: datetime = Field(alias="Date")
    gallons: float = Field(default=0.0, alias="Gallons")

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Any:
        if isinstance(value, str):
            return datetime.strptime(value.strip(), LEDGER_DATE_FORMAT)
        return value

    @field_validator("gallons", mode="before")
    @classmethod
    def _blank_gallons(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return 0.0
        return value


class LedgerDocument(BaseModel):
    """Top-level ledger document: ``{"Data": [...]}``."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    entries: list[LedgerEntry] = Field(alias="Data")


def ledger_record(run_time: datetime, gallons: float) -> dict[str, str]:
    """Fields written back for a watered zone, in the ledger's string format."""
    return {
        "Date": run_time.strftime(LEDGER_DATE_FORMAT),
        "Gallons": f"{gallons:f}",
    }
