"""Webhook HTTP surface and delivery watcher."""

from vre_dispatch.api.auth import verify_request
from vre_dispatch.api.server import WebhookServer, run_server
from vre_dispatch.api.watcher import wait_for_delivery

__all__ = ["WebhookServer", "run_server", "verify_request", "wait_for_delivery"]
