from __future__ import annotations

from typing import Any

import boto3

from ..observability.logging import get_logger
from ..settings import settings

log = get_logger("email_ses")


class EmailNotConfigured(RuntimeError):
    pass


def _sesv2_client():
    return boto3.client("sesv2", region_name=settings.aws_region)


def send_email(
    *, to_email: str, subject: str, text: str, html: str | None = None
) -> dict[str, Any]:
    frm = str(settings.ses_from_email or "").strip()
    if not frm:
        raise EmailNotConfigured("SES_FROM_EMAIL is not set")
    to_ = str(to_email or "").strip()
    if not to_:
        raise ValueError("to_email is required")

    body: dict[str, Any] = {"Text": {"Data": str(text or "").strip() or "(empty)"}}
    if html:
        body["Html"] = {"Data": html}

    resp = _sesv2_client().send_email(
        FromEmailAddress=frm,
        Destination={"ToAddresses": [to_]},
        Content={
            "Simple": {
                "Subject": {"Data": str(subject or "").strip()[:200] or "ProposalIQ"},
                "Body": body,
            }
        },
    )
    msg_id = (resp or {}).get("MessageId") if isinstance(resp, dict) else None
    log.info("email_sent", message_id=msg_id)
    return {"ok": True, "message_id": msg_id}
