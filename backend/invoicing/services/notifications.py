# Overview: Fire-and-forget stock-change notifications for downstream catalog mirrors.

from __future__ import annotations

import logging

from blinker import Namespace


logger = logging.getLogger(__name__)

_signals = Namespace()

# Receivers get sender=<sku code> and keyword new_quantity=<int>.
stock_changed = _signals.signal("stock-changed")


def emit_stock_changed(sku: str, new_quantity: int) -> None:
    """
    Notify every receiver of a committed stock change.

    Called after the database commit. A failing receiver is logged and
    skipped; it never fails the caller or the remaining receivers.
    """
    for receiver in stock_changed.receivers_for(sku):
        try:
            receiver(sku, new_quantity=new_quantity)
        except Exception:
            logger.exception("Stock-changed receiver %r failed for sku=%s", receiver, sku)
