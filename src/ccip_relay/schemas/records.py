"""
Record store models.
"""

from datetime import datetime

from pydantic import Field

from .bases import CanonicalModel


class ResolutionRecord(CanonicalModel):
    """
    A resolved name -> address mapping as held by the record store.

    Attributes:
        name: Dotted name (decoded from the stored wire encoding)
        dns_name: Wire-encoded name, the record's key
        address: Checksum address the name resolved to
        updated_at: Time of the last write to this record
    """
    name: str = Field(..., description="Dotted name")
    dns_name: bytes = Field(..., description="DNS wire-encoded name (primary key)")
    address: str = Field(..., description="Resolved address")
    updated_at: datetime = Field(..., description="Last write time")
