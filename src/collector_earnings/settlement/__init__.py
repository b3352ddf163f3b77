"""Cash versus digital settlement between collector and platform."""

from collector_earnings.settlement.reconciler import (
    CHANNEL_ALIASES,
    PaymentRecord,
    SettlementDirection,
    SettlementPosition,
    SettlementReconciler,
    channels_by_event,
    classify_channel,
)

__all__ = [
    "CHANNEL_ALIASES",
    "PaymentRecord",
    "SettlementDirection",
    "SettlementPosition",
    "SettlementReconciler",
    "channels_by_event",
    "classify_channel",
]
