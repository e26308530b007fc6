"""
Payment processor boundary.

The lifecycle engine only talks to the processor through ``ProcessorClient``.
Implementations translate SDK failures into the three error kinds the
engine understands: TransientProcessorError (retry later),
ProcessorRejectedError (never retry) and ConfigurationError (stop).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol


@dataclass(frozen=True)
class ProcessorIntent:
    """Processor-side view of a payment intent."""

    id: str
    status: str
    amount: Optional[int] = None
    client_secret: Optional[str] = None
    charge_ref: Optional[str] = None


@dataclass(frozen=True)
class ProcessorRefund:
    id: str
    status: str
    amount: int


class ProcessorClient(Protocol):
    """Operations the lifecycle engine needs from the payment processor."""

    def authorize(
        self,
        amount: int,
        currency: str,
        metadata: Mapping[str, str],
        *,
        idempotency_key: str,
        payment_method_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> ProcessorIntent:
        ...

    def capture(self, processor_intent_id: str, *, idempotency_key: str) -> ProcessorIntent:
        ...

    def cancel(
        self,
        processor_intent_id: str,
        *,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorIntent:
        ...

    def refund(
        self,
        processor_intent_id: str,
        *,
        amount: int,
        idempotency_key: str,
        reason: Optional[str] = None,
    ) -> ProcessorRefund:
        ...

    def fetch_status(self, processor_intent_id: str) -> ProcessorIntent:
        ...

    def find_by_reference(self, reference: str) -> Optional[ProcessorIntent]:
        """Return the intent whose metadata carries this local payment id, if any."""
        ...

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        ...
