# app/services/email.py
"""Purchase confirmation email, sent once when a fulfillment completes."""
from __future__ import annotations

import datetime as _dt
import html as _html
import logging
from typing import Optional

import resend

from app.core.config import settings
from app.services import gcp_clients

log = logging.getLogger(__name__)

_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "CAD": "CA$"}


def _item_title(i: dict) -> str:
    return str(i.get("title") or i.get("name") or i.get("eventId") or i.get("productId") or "Item")

def _item_qty(i: dict) -> int:
    return i.get("quantity") or i.get("qty") or i.get("selectedQuantity") or i.get("ticketQuantity") or 1

def _items(doc: dict) -> list:
    for key in ("items", "details", "createdTickets"):
        if isinstance(doc.get(key), list):
            return [i for i in doc[key] if isinstance(i, dict)]
    return []

def format_total(amount_cents, currency: str) -> str:
    if not isinstance(amount_cents, (int, float)) or isinstance(amount_cents, bool) or not amount_cents:
        return ""
    code = (currency or "usd").upper()
    symbol = _CURRENCY_SYMBOLS.get(code)
    value = f"{amount_cents / 100:,.2f}"
    return f"{symbol}{value}" if symbol else f"{value} {code}"

def _order_number(doc: dict, pi_id: str) -> str:
    details = doc.get("details")
    first = details[0] if isinstance(details, list) and details and isinstance(details[0], dict) else {}
    return str(doc.get("orderNumber") or first.get("orderNumber") or pi_id)

def render_purchase_email(order_number: str, items: list, total: str) -> tuple[str, str]:
    account_url = f"{settings.ui_origin.rstrip('/')}/account"
    lines = "\n".join(f"• {_item_title(i)} × {_item_qty(i)}" for i in items)
    text = (
        f"Thanks for your purchase!\nOrder: {order_number}\n{lines}\n"
        + (f"Total: {total}\n" if total else "")
        + f"View tickets: {account_url}"
    )

    rows = "".join(
        f"""
          <tr>
            <td style="padding:8px 0;color:#111;font-size:14px;line-height:20px">{_html.escape(_item_title(i))}</td>
            <td style="padding:8px 0;color:#111;font-size:14px;line-height:20px;text-align:right">× {_html.escape(str(_item_qty(i)))}</td>
          </tr>"""
        for i in items
    )
    table = f'<table style="width:100%;border-collapse:collapse;margin:8px 0 16px">{rows}</table>' if rows else ""
    total_html = f'<p style="margin:0 0 16px;color:#111;font-size:14px;line-height:20px"><b>Total: {total}</b></p>' if total else ""
    order = _html.escape(order_number)

    html = f"""\
<div style="background:#f6f6f6;padding:24px 0">
  <div style="max-width:600px;margin:0 auto;background:#ffffff;border-radius:8px;overflow:hidden;border:1px solid #eee;font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,Helvetica,Arial,sans-serif">
    <div style="display:none;max-height:0;overflow:hidden">Your tickets are ready, order {order}</div>
    <div style="height:3px;background:#E12D39"></div>
    <div style="padding:24px">
      <h2 style="margin:0 0 8px;font-size:18px;color:#111">Thanks for your purchase!</h2>
      <p style="margin:0 0 12px;color:#111;font-size:14px;line-height:20px">Order <b>{order}</b></p>
      {table}
      {total_html}
      <p style="margin:0 0 16px;color:#111;font-size:14px;line-height:20px">Your tickets are now in your account.</p>
      <a href="{account_url}" style="display:inline-block;background:#E12D39;color:#fff;text-decoration:none;padding:10px 14px;border-radius:6px;font-size:14px">View my tickets</a>
      <p style="margin:12px 0 0;color:#6b7280;font-size:12px;line-height:18px">If you didn't make this purchase, please reply to this email.</p>
    </div>
  </div>
</div>"""
    return html, text

def _is_completed_transition(before: Optional[dict], after: dict) -> bool:
    prev = str((before or {}).get("status") or "").lower()
    curr = str(after.get("status") or "").lower()
    return curr == "completed" and prev != "completed"

def on_fulfillment_written(pi_id: str, before: Optional[dict], after: Optional[dict]) -> Optional[str]:
    """
    fulfillments/{piId} written. Sends at most one email per fulfillment and
    re-raises send failures so the platform retries the event.
    """
    if not after:
        return None
    if after.get("emailSentAt"):
        log.debug("Email already sent for %s", pi_id)
        return None
    if not _is_completed_transition(before, after):
        log.debug("Not a completed transition; skipping %s", pi_id)
        return None

    recipient = after.get("email") or after.get("userEmail") or ""
    if not recipient:
        log.warning("Missing recipient email on fulfillment %s; cannot send", pi_id)
        return None
    if not settings.resend_api_key:
        log.warning("RESEND_API_KEY missing; purchase email for %s not sent", pi_id)
        return None

    order_number = _order_number(after, pi_id)
    total = format_total(after.get("amount"), after.get("currency") or "usd")
    html, text = render_purchase_email(order_number, _items(after), total)

    resend.api_key = settings.resend_api_key
    from_addr = settings.resend_from or f"RAGESTATE <orders@{settings.resend_domain}>"
    params = {
        "from": from_addr,
        "to": [recipient],
        "subject": f"Your tickets — {order_number}",
        "html": html,
        "text": text,
    }
    if settings.support_email:
        params["reply_to"] = settings.support_email

    try:
        result = resend.Emails.send(params)
    except Exception:
        log.exception("Purchase email failed for %s (order %s)", pi_id, order_number)
        raise

    message_id = (result or {}).get("id") if isinstance(result, dict) else getattr(result, "id", None)
    gcp_clients.get_firestore_client().collection("fulfillments").document(pi_id).update({
        "emailSentAt": _dt.datetime.now(_dt.timezone.utc),
        "emailProvider": "resend",
        "emailMessageId": message_id,
        "email": after.get("email") or recipient,
    })
    log.info("Purchase email sent", extra={"piId": pi_id, "orderNumber": order_number})
    return message_id
