"""
WhatsApp notifications through an Evolution API instance.

Notifications are best effort: a case is published whether or not the
message goes out, so notify_case_available() logs failures and returns.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import quote

import httpx

from klamai.core.config import settings
from klamai.core.logger import logger
from klamai.utils.helpers import sanitize_phone

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")


def sanitize_text(text: str) -> str:
    """Drop non-printable control characters, keeping line breaks and tabs."""
    return _CONTROL_CHARS.sub("", text or "").strip()


def format_whatsapp_text(raw: str) -> str:
    text = raw.replace("\r\n", "\n").replace("\r", "\n")
    text = _MARKDOWN_LINK.sub(r"\1: \2", text)
    text = re.sub(r"[ \t]*\n[ \t]*", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text)


def build_case_available_message(case_info: dict) -> str:
    cliente = case_info.get("cliente") or {}
    nombre = " ".join(
        part for part in (cliente.get("nombre"), cliente.get("apellido")) if part
    )
    lines = [
        "*Nuevo caso disponible*",
        f"Caso: {case_info.get('id')}",
        f"Motivo: {case_info.get('motivo_consulta') or 'Sin motivo'}",
    ]
    if case_info.get("tipo_lead"):
        lines.append(f"Tipo de lead: {case_info['tipo_lead']}")
    if case_info.get("valor_estimado"):
        lines.append(f"Valor estimado: {case_info['valor_estimado']}")
    if nombre:
        lines.append(f"Cliente: {nombre}")
    return "\n".join(lines)


class WhatsAppNotifier:
    """Sends text messages via ``POST {server}/message/sendText/{instance}``."""

    def __init__(
        self,
        server_url: Optional[str] = None,
        instance: Optional[str] = None,
        api_key: Optional[str] = None,
        admin_number: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.server_url = (server_url if server_url is not None else settings.EVOLUTION_API_SERVER_URL) or ""
        self.instance = (instance if instance is not None else settings.EVOLUTION_API_INSTANCE) or ""
        self.api_key = (api_key if api_key is not None else settings.EVOLUTION_API_KEY) or ""
        self.admin_number = (
            admin_number if admin_number is not None else settings.ADMIN_WHATSAPP_NUMBER
        ) or ""
        self.enabled = settings.CASE_NOTIFICATIONS_ENABLED if enabled is None else enabled
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.server_url and self.instance and self.api_key)

    def _send_text_url(self) -> str:
        return f"{self.server_url.rstrip('/')}/message/sendText/{quote(self.instance, safe='')}"

    async def send_text(self, number: str, text: str) -> dict:
        """
        Send *text* to *number*. Raises ValueError for an empty number or
        message and httpx.HTTPStatusError when the gateway rejects it.
        """
        if not self.configured:
            raise ValueError("Evolution API is not configured")
        phone = sanitize_phone(number)
        message = format_whatsapp_text(sanitize_text(text))
        if not phone or not message:
            raise ValueError("Both number and text are required")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self._send_text_url(),
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                json={"number": phone, "text": message},
            )
            response.raise_for_status()
        logger.info("WhatsApp message sent to %s", phone)
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    async def notify_case_available(self, case_info: dict) -> bool:
        """Tell the admin number that a case was published. Never raises."""
        if not self.enabled:
            return False
        if not self.configured or not self.admin_number:
            logger.warning("Case notifications enabled but WhatsApp is not configured")
            return False
        try:
            await self.send_text(self.admin_number, build_case_available_message(case_info))
            return True
        except Exception as e:
            logger.warning("Case %s notification failed: %s", case_info.get("id"), e)
            return False


# Singleton
whatsapp_notifier = WhatsAppNotifier()
