"""
WhatsApp Cloud API helpers for appointment request notifications.

Sending the first message to a user outside the 24h customer window usually
requires an approved template; these helpers only send plain text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Optional

import requests

from api.config import NotifyConfig

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"
STUDIO_SIGNATURE = "— Souli Studio"
FRENCH_MONTHS = (
    "janvier",
    "février",
    "mars",
    "avril",
    "mai",
    "juin",
    "juillet",
    "août",
    "septembre",
    "octobre",
    "novembre",
    "décembre",
)
ADMIN_PHONE_MISSING = "skipped (missing WHATSAPP_ADMIN_PHONE)"


class WhatsAppError(Exception):
    """Base error for WhatsApp helpers."""


class WhatsAppConfigError(WhatsAppError):
    """Raised when WhatsApp credentials are missing."""


class WhatsAppRequestError(WhatsAppError):
    """Raised when the Cloud API rejects a message."""


@dataclass(frozen=True)
class AppointmentRequest:
    date: str
    name: str
    phone: str
    type: Optional[str] = None


def normalize_phone(raw: str) -> str:
    """The Cloud API expects international numbers without the leading '+'."""
    cleaned = "".join(str(raw or "").split())
    return cleaned[1:] if cleaned.startswith("+") else cleaned


def format_date_fr(yyyy_mm_dd: str) -> str:
    try:
        parsed = date.fromisoformat(yyyy_mm_dd)
    except (TypeError, ValueError):
        return yyyy_mm_dd
    return f"{parsed.day} {FRENCH_MONTHS[parsed.month - 1]} {parsed.year}"


def build_client_message(request: AppointmentRequest) -> str:
    return (
        "Merci pour votre patience. ✅\n"
        f"Votre demande de consultation pour le {format_date_fr(request.date)} a bien été reçue.\n"
        "Nous reviendrons vers vous très bientôt pour confirmer l’horaire.\n\n"
        f"{STUDIO_SIGNATURE}"
    )


def build_admin_message(request: AppointmentRequest) -> str:
    message = (
        "📅 Nouvelle demande de rendez-vous à valider\n"
        f"• Date : {format_date_fr(request.date)}\n"
        f"• Nom : {request.name}\n"
        f"• Téléphone : {request.phone}"
    )
    if request.type:
        message += f"\n• Type : {request.type}"
    return message


def send_text(config: NotifyConfig, to: str, text: str) -> dict[str, Any]:
    if not config.whatsapp_token or not config.phone_number_id:
        raise WhatsAppConfigError("Missing WHATSAPP_TOKEN or WHATSAPP_PHONE_NUMBER_ID")
    url = f"{GRAPH_API_BASE}/{config.graph_version}/{config.phone_number_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": normalize_phone(to),
        "type": "text",
        "text": {"preview_url": False, "body": text},
    }
    try:
        res = requests.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {config.whatsapp_token}"},
            timeout=10,
        )
    except requests.RequestException as exc:
        raise WhatsAppRequestError(f"WhatsApp send failed: {exc}") from exc
    if res.status_code >= 400:
        raise WhatsAppRequestError(f"WhatsApp send failed ({res.status_code}): {res.text[:200]}")
    return res.json() if res.content else {}


def _attempt(recipient: str, send: Callable[[], Any]) -> str:
    try:
        send()
    except WhatsAppError:
        logger.exception("WhatsApp %s message failed", recipient)
        return "failed"
    return "sent"


def notify_appointment_request(config: NotifyConfig, request: AppointmentRequest) -> dict[str, str]:
    """
    Send the client acknowledgement and the admin alert independently.
    Each recipient gets its own status; one failure never blocks the other.
    """
    results = {
        "client": _attempt(
            "client", lambda: send_text(config, request.phone, build_client_message(request))
        )
    }
    if config.admin_phone:
        results["admin"] = _attempt(
            "admin", lambda: send_text(config, config.admin_phone, build_admin_message(request))
        )
    else:
        results["admin"] = ADMIN_PHONE_MISSING
    return results


def handle_notify(
    method: str,
    body: Any,
    *,
    config_loader: Callable[[], NotifyConfig],
) -> tuple[int, dict[str, Any]]:
    if (method or "").upper() != "POST":
        return 405, {"error": "Method not allowed"}
    if not isinstance(body, dict):
        return 400, {"error": "Missing required fields"}
    fields = {key: body.get(key) for key in ("date", "name", "phone")}
    if not all(isinstance(value, str) and value.strip() for value in fields.values()):
        return 400, {"error": "Missing required fields"}
    appointment_type = body.get("type")
    request = AppointmentRequest(
        date=fields["date"].strip(),
        name=fields["name"].strip(),
        phone=fields["phone"].strip(),
        type=str(appointment_type) if appointment_type else None,
    )
    try:
        results = notify_appointment_request(config_loader(), request)
    except Exception:
        logger.exception("Notify error")
        return 500, {"error": "Internal server error"}
    return 200, {"success": True, "results": results}
