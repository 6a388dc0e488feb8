"""Delivery sequencing."""

from vre_dispatch.delivery.sequencer import DeliverySequencer, FallbackSequencer

__all__ = ["DeliverySequencer", "FallbackSequencer"]
