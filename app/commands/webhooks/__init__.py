"""Webhook command handlers."""

from app.commands.base_line import BaseLineCommand
from app.commands.webhooks.line_command import LineWebhookCommand

__all__ = ["BaseLineCommand", "LineWebhookCommand"]
