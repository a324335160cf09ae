"""支付任务的邮件模板

每个渲染函数返回包含主题、HTML 与纯文本正文的 RenderedEmail。
插入 HTML 之前所有值都会转义。
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Any, Dict, List, Optional, Union

from config.settings import settings

Number = Union[int, float, Decimal]


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


# 各逾期紧急程度对应的主题与强调色
URGENCY_STYLES = {
    "low": {"title": "Payment Overdue", "color": "#007bff",
            "message": "Your rent payment is overdue."},
    "medium": {"title": "Payment Overdue", "color": "#ffc107",
               "message": "Your rent payment is overdue."},
    "high": {"title": "Important: Payment Overdue", "color": "#fd7e14",
             "message": "Your rent payment is significantly overdue."},
    "critical": {"title": "URGENT: Payment Severely Overdue", "color": "#dc3545",
                 "message": "Your rent payment is severely overdue and requires immediate attention."},
}

AUTO_PAY_STYLES = {
    "success": {"title": "Auto-Pay Payment Confirmation", "color": "#28a745"},
    "failed": {"title": "Auto-Pay Payment Failed", "color": "#dc3545"},
}

HEALTH_STYLES = {
    "healthy": "#28a745",
    "warning": "#ffc107",
    "critical": "#dc3545",
}


def format_amount(amount: Number, currency: Optional[str] = None) -> str:
    currency = settings.currency_symbol if currency is None else currency
    value = float(amount or 0)
    if value == int(value):
        return f"{currency}{int(value):,}"
    return f"{currency}{value:,.2f}"


def format_date(value: datetime) -> str:
    return value.strftime("%d %b %Y")


def _plural_days(days: int) -> str:
    return f"{days} day{'s' if days != 1 else ''}"


def _layout(title: str, accent: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <title>{escape(title)}</title>
</head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="border-top: 4px solid {accent}; padding: 24px; background: #ffffff;">
    <h2 style="color: {accent}; margin-top: 0;">{escape(title)}</h2>
{body}
  </div>
</body>
</html>
"""


def _rows_html(rows: List[tuple]) -> str:
    cells = "\n".join(
        f'      <tr><td style="padding: 6px 12px 6px 0;">{escape(label)}</td>'
        f'<td style="padding: 6px 0;"><strong>{escape(str(value))}</strong></td></tr>'
        for label, value in rows
    )
    return f"    <table>\n{cells}\n    </table>"


def _rows_text(rows: List[tuple]) -> str:
    return "\n".join(f"{label}: {value}" for label, value in rows)


def _booking_rows(booking: Optional[Dict[str, Any]]) -> List[tuple]:
    if not booking:
        return []
    rows = [
        ("Property", booking.get("property") or "Unknown Property"),
        ("Room", booking.get("room") or "Unknown Room"),
    ]
    start, end = booking.get("start_date"), booking.get("end_date")
    if isinstance(start, datetime) and isinstance(end, datetime):
        rows.append(("Stay", f"{format_date(start)} - {format_date(end)}"))
    return rows


def render_rent_reminder(customer_name: str, amount: Number, due_date: datetime,
                         days_remaining: int,
                         booking: Optional[Dict[str, Any]] = None,
                         currency: Optional[str] = None) -> RenderedEmail:
    """租金到期前的提醒邮件"""
    title = "Rent Payment Reminder"
    subject = f"{title} - Due {format_date(due_date)}"
    rows = [
        ("Amount", format_amount(amount, currency)),
        ("Due date", format_date(due_date)),
        ("Days remaining", _plural_days(days_remaining)),
    ] + _booking_rows(booking)

    greeting = f"Dear {customer_name},"
    intro = (
        f"This is a friendly reminder that your rent payment is due in "
        f"{_plural_days(days_remaining)}."
    )
    html = _layout(title, "#007bff", (
        f"    <p>{escape(greeting)}</p>\n"
        f"    <p>{escape(intro)}</p>\n"
        f"{_rows_html(rows)}\n"
        "    <p>Please make sure the payment is completed before the due date.</p>"
    ))
    text = (
        f"{greeting}\n\n{intro}\n\n{_rows_text(rows)}\n\n"
        "Please make sure the payment is completed before the due date.\n"
    )
    return RenderedEmail(subject=subject, html=html, text=text)


def render_overdue_notice(customer_name: str, amount: Number, due_date: datetime,
                          days_overdue: int, urgency: str,
                          booking: Optional[Dict[str, Any]] = None,
                          currency: Optional[str] = None) -> RenderedEmail:
    """租金逾期通知，语气随紧急程度变化"""
    style = URGENCY_STYLES[urgency]
    subject = f"{style['title']} - {_plural_days(days_overdue)} overdue"
    rows = [
        ("Amount", format_amount(amount, currency)),
        ("Due date", format_date(due_date)),
        ("Days overdue", _plural_days(days_overdue)),
    ] + _booking_rows(booking)

    greeting = f"Dear {customer_name},"
    html = _layout(style["title"], style["color"], (
        f"    <p>{escape(greeting)}</p>\n"
        f"    <p>{escape(style['message'])}</p>\n"
        f"{_rows_html(rows)}\n"
        "    <p>Please pay the outstanding amount as soon as possible.</p>"
    ))
    text = (
        f"{greeting}\n\n{style['message']}\n\n{_rows_text(rows)}\n\n"
        "Please pay the outstanding amount as soon as possible.\n"
    )
    return RenderedEmail(subject=subject, html=html, text=text)


def render_auto_pay_status(customer_name: str, amount: Number, status: str,
                           due_date: Optional[datetime] = None,
                           transaction_reference: Optional[str] = None,
                           error: Optional[str] = None,
                           currency: Optional[str] = None) -> RenderedEmail:
    """自动扣款成功确认（``status="success"``）或失败通知"""
    style = AUTO_PAY_STYLES[status]
    subject = f"{style['title']} - {format_amount(amount, currency)}"
    rows = [("Amount", format_amount(amount, currency))]
    if due_date is not None:
        rows.append(("Due date", format_date(due_date)))
    if transaction_reference:
        rows.append(("Transaction", transaction_reference))
    if error:
        rows.append(("Reason", error))

    greeting = f"Dear {customer_name},"
    if status == "success":
        intro = "Your rent payment was collected automatically."
    else:
        intro = "We could not collect your rent payment automatically. Please pay it manually."
    html = _layout(style["title"], style["color"], (
        f"    <p>{escape(greeting)}</p>\n"
        f"    <p>{escape(intro)}</p>\n"
        f"{_rows_html(rows)}"
    ))
    text = f"{greeting}\n\n{intro}\n\n{_rows_text(rows)}\n"
    return RenderedEmail(subject=subject, html=html, text=text)


def render_health_alert(status: str, message: str, issues: List[str],
                        timestamp: datetime) -> RenderedEmail:
    """任务系统不健康时发给运维人员的告警"""
    title = f"Job System {status.upper()}"
    subject = f"[{status.upper()}] Payment job system health check"
    issue_items = "\n".join(f"      <li>{escape(issue)}</li>" for issue in issues)
    html = _layout(title, HEALTH_STYLES.get(status, "#6c757d"), (
        f"    <p>{escape(message)}</p>\n"
        f"    <p>Checked at {escape(timestamp.isoformat(timespec='seconds'))}</p>\n"
        f"    <ul>\n{issue_items}\n    </ul>"
    ))
    text = (
        f"{message}\nChecked at {timestamp.isoformat(timespec='seconds')}\n\n"
        + "\n".join(f"- {issue}" for issue in issues) + "\n"
    )
    return RenderedEmail(subject=subject, html=html, text=text)
