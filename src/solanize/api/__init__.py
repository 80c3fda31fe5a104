"""HTTP access to the backend gateway."""

from solanize.api.chat_api import ChatApi
from solanize.api.gateway import GatewayClient

__all__ = ["ChatApi", "GatewayClient"]
