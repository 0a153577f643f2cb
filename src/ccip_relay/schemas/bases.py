"""
Base Schema Models for the ccip_relay System

This module defines the base classes that the other schema models inherit
from. It provides consistent validation and serialization behaviour across
the gateway, the relayer and the clients.

Core Classes:
    - CanonicalModel: Pydantic base model serialized under its wire aliases
    - TransactionStatus: Outcome of an on-chain submission
    - BaseTransactionConfirmation: Abstract transaction confirmation model

Dependencies:
    - pydantic: For data validation and serialization
"""

from abc import ABC
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    Pydantic base model serialized under its wire names.

    Field aliases (the camelCase wire names) are accepted on input alongside
    the Python field names.

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        model.to_dict()  # {"name": "test", "value": 123}
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to its JSON-compatible wire representation.

        Returns:
            Dict[str, Any]: Dictionary keyed by wire aliases.
        """
        return self.model_dump(mode="json", by_alias=True)


class TransactionStatus(str, Enum):
    """
    Enumeration of possible transaction execution statuses.

    Attributes:
        SUCCESS: Transaction executed successfully on-chain
        FAILED: Transaction reverted on-chain
        PENDING: Transaction was broadcast but not confirmed before the wait ended
    """
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """
    Abstract base class for transaction confirmation/receipt data.

    A PENDING status is not a failure: the transaction was broadcast and
    cannot be withdrawn, the caller merely stopped waiting for it.

    Attributes:
        confirmation_type: Type of confirmation (e.g., "evm")
        status: Transaction execution status (TransactionStatus enum)
        execution_time: Seconds between broadcast and the end of the wait
        error_message: Error message if transaction failed
    """

    confirmation_type: str = Field(..., description="Type of confirmation (e.g., evm)")
    status: TransactionStatus = Field(..., description="Transaction execution status")
    execution_time: Optional[float] = Field(None, ge=0, description="Time to confirm (seconds)")
    error_message: Optional[str] = Field(None, description="Error message if transaction failed")

    def is_success(self) -> bool:
        """
        Check whether the transaction was accepted.

        Pending transactions count as accepted: they were broadcast with a
        valid nonce and may still be mined.

        Returns:
            bool: True for SUCCESS or PENDING, False if the transaction reverted.
        """
        return self.status in (TransactionStatus.SUCCESS, TransactionStatus.PENDING)

