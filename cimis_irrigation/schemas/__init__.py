"""
Schemas Module
==============

Pydantic models validating the irrigation ledger file.
"""

from cimis_irrigation.schemas.ledger import LedgerDocument, LedgerEntry, ledger_record

__all__ = ["LedgerDocument", "LedgerEntry", "ledger_record"]
