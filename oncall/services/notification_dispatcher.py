"""Notification dispatcher.

Sends one notification attempt to one on-call member through every
channel available to them (email and/or SMS), posting to the configured
HTTP gateways. Each channel succeeds or fails independently.
"""

import httpx

from oncall.config import settings
from oncall.logging_config import get_logger
from oncall.schemas.alert import AlertRecord
from oncall.schemas.coverage import OnCallMember
from oncall.schemas.notification import NotificationRequest, NotificationResult

logger = get_logger(__name__)

SUBJECT_PREFIX = "[On-Call]"

# SMS gateways split long messages; keep the title short
SMS_TITLE_MAX_LENGTH = 50


class NotificationDispatchError(Exception):
    """A notification channel could not be delivered."""


def _severity_label(alert: AlertRecord) -> str:
    return alert.severity.value.upper()


def build_subject(alert: AlertRecord) -> str:
    """Email subject line for an alert."""
    return f"{SUBJECT_PREFIX} {_severity_label(alert)}: {alert.title or alert.resource_id}"


def build_email_body(alert: AlertRecord) -> str:
    """Plain-text email body for an alert."""
    return (
        "Alert Notification\n"
        "\n"
        f"Title: {alert.title or 'Untitled alert'}\n"
        f"Severity: {_severity_label(alert)}\n"
        f"Resource: {alert.resource_id}\n"
        "\n"
        "Description:\n"
        f"{alert.description or 'No description provided'}\n"
        "\n"
        "You are receiving this notification because you are on-call.\n"
        "Acknowledge the alert to stop further escalation.\n"
    )


def build_sms_message(alert: AlertRecord) -> str:
    """Short SMS text for an alert, with the title truncated."""
    title = alert.title or alert.resource_id
    if len(title) > SMS_TITLE_MAX_LENGTH:
        title = title[: SMS_TITLE_MAX_LENGTH - 3] + "..."
    return f"{SUBJECT_PREFIX} {_severity_label(alert)}: {title}"


def build_notification_request(
    alert: AlertRecord,
    member: OnCallMember,
) -> NotificationRequest:
    """Build the notification for one member about one alert."""
    return NotificationRequest(
        alert_id=alert.id,
        user_id=member.user_id,
        display_name=member.display_name,
        email=member.email,
        phone=member.phone,
        subject=build_subject(alert),
        body=build_email_body(alert),
        sms_text=build_sms_message(alert),
    )


def _headers() -> dict[str, str]:
    if settings.notification_api_key:
        return {"Authorization": f"Bearer {settings.notification_api_key}"}
    return {}


async def _post(client: httpx.AsyncClient, url: str, payload: dict) -> None:
    response = await client.post(url, json=payload, headers=_headers())
    if response.status_code >= 400:
        raise NotificationDispatchError(
            f"Gateway error: {response.status_code} {response.text}"
        )


async def send_email(client: httpx.AsyncClient, request: NotificationRequest) -> None:
    """Post an email to the email gateway.

    Raises:
        NotificationDispatchError: Gateway not configured or rejected the message.
        httpx.HTTPError: Transport failure.
    """
    if not settings.email_gateway_url:
        raise NotificationDispatchError("Email gateway is not configured")

    await _post(
        client,
        settings.email_gateway_url,
        {
            "from": settings.email_sender,
            "to": [request.email],
            "subject": request.subject,
            "text": request.body,
        },
    )


async def send_sms(client: httpx.AsyncClient, request: NotificationRequest) -> None:
    """Post a text message to the SMS gateway.

    Raises:
        NotificationDispatchError: Gateway not configured or rejected the message.
        httpx.HTTPError: Transport failure.
    """
    if not settings.sms_gateway_url:
        raise NotificationDispatchError("SMS gateway is not configured")

    await _post(
        client,
        settings.sms_gateway_url,
        {
            "to": [request.phone],
            "text": request.sms_text,
        },
    )


async def dispatch_notification(
    request: NotificationRequest,
    client: httpx.AsyncClient | None = None,
) -> NotificationResult:
    """Send one notification attempt via every available channel.

    A missing address or number skips that channel. Failures are
    reported in the result, never raised; the first error is kept.

    Args:
        request: Who to notify and what to say.
        client: HTTP client to use; one is created when omitted.

    Returns:
        Per-channel success and the first error, if any.
    """
    email_sent = False
    sms_sent = False
    error: str | None = None

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)

    try:
        if request.email:
            try:
                await send_email(client, request)
                email_sent = True
            except (NotificationDispatchError, httpx.HTTPError) as e:
                logger.warning(
                    "Failed to send email notification",
                    alert_id=request.alert_id,
                    user_id=request.user_id,
                    error=str(e),
                )
                error = str(e)
        else:
            logger.warning("No email address for user", user_id=request.user_id)

        if request.phone:
            try:
                await send_sms(client, request)
                sms_sent = True
            except (NotificationDispatchError, httpx.HTTPError) as e:
                logger.warning(
                    "Failed to send SMS notification",
                    alert_id=request.alert_id,
                    user_id=request.user_id,
                    error=str(e),
                )
                error = error or str(e)
        else:
            logger.warning("No phone number for user", user_id=request.user_id)
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "Notification dispatched",
        alert_id=request.alert_id,
        user_id=request.user_id,
        email_sent=email_sent,
        sms_sent=sms_sent,
    )

    return NotificationResult(email_sent=email_sent, sms_sent=sms_sent, error=error)
