"""
Async-safe email sender.

smtplib is blocking; every send runs in the event loop's default executor so
that request handlers are never blocked waiting for SMTP. Sends are
fire-and-forget: callers learn whether the email was queued, not delivered.
"""
import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from giftregistry.core.config import settings

logger = logging.getLogger("giftregistry.mailer")

_pending: set[asyncio.Task] = set()


def format_money(amount: float, currency: str | None) -> str:
    code = (currency or settings.default_currency).upper()
    return f"{amount:,.2f} {code}"


def _get_base_html_template(title: str, content_html: str, button_text: str | None = None, button_link: str | None = None) -> str:
    """Wrap pre-escaped ``content_html`` in the shared layout."""
    safe_title = html.escape(title)

    button_html = ""
    if button_text and button_link:
        safe_button_text = html.escape(button_text)
        safe_button_link = html.escape(button_link, quote=True)
        button_html = f'''
        <div style="text-align: center; margin: 30px 0;">
            <a href="{safe_button_link}" style="display: inline-block; padding: 14px 28px; background-color: #6366f1; color: #ffffff; text-decoration: none; border-radius: 8px; font-weight: 600;">
                {safe_button_text}
            </a>
        </div>'''

    return f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>{safe_title}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #f3f4f6; font-family: Arial, sans-serif;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <tr>
            <td style="background-color: #ffffff; border-radius: 16px; padding: 40px;">
                <h2 style="margin: 0 0 20px 0; font-size: 22px; color: #1f2937; text-align: center;">{safe_title}</h2>
                <div style="color: #4b5563; font-size: 16px; line-height: 1.6;">
                    {content_html}
                </div>
                {button_html}
                <p style="margin-top: 40px; color: #9ca3af; font-size: 12px; text-align: center;">
                    You can turn these emails off in your notification settings.
                </p>
            </td>
        </tr>
    </table>
</body>
</html>'''


def _build_message(to_email: str, subject: str, text_body: str, html_body: str) -> MIMEMultipart:
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.smtp_from_email
    message["To"] = to_email
    message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))
    return message


def _send_sync(message: MIMEMultipart) -> None:
    """Blocking SMTP send – must be run in an executor."""
    if settings.smtp_use_tls:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    else:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)


async def _send_async(message: MIMEMultipart) -> None:
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_sync, message)
        logger.info("Email sent to %s subject=%r", message["To"], message["Subject"])
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email to %s subject=%r", message["To"], message["Subject"])


def send_email(to_email: str, subject: str, text_body: str, html_body: str) -> bool:
    """Queue an email; returns False when nothing was queued."""
    if not settings.email_notifications_enabled:
        logger.info("Email notifications disabled. Skipping email to %s: %s", to_email, subject)
        return False
    if not settings.smtp_host:
        logger.info("SMTP not configured. Email for %s would be sent: %s", to_email, subject)
        return False

    message = _build_message(to_email, subject, text_body, html_body)
    task = asyncio.get_running_loop().create_task(_send_async(message))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return True


def send_contribution_received_email(
    to_email: str,
    registry_title: str,
    gift_item_name: str,
    contributor_name: str,
    amount: float,
    currency: str,
    total_contributed: float,
    target: float,
    percent_funded: float,
    registry_link: str,
    message: str | None = None,
) -> bool:
    """
    Tell a registry owner that someone contributed to one of their items.

    Args:
        to_email: Registry owner's email
        registry_title: Registry title
        gift_item_name: Gift item the contribution went to
        contributor_name: Resolved display name (already masked if hidden)
        amount: Contribution amount
        currency: Registry currency code
        total_contributed: Item total after this contribution
        target: Item target (price x quantity)
        percent_funded: Clamped funding percentage for the item
        registry_link: Link to the registry page
        message: Optional note left by the contributor
    """
    subject = f"New contribution to {registry_title}"
    amount_text = format_money(amount, currency)
    progress_text = f"{format_money(total_contributed, currency)} / {format_money(target, currency)}"

    text_body = (
        f"{contributor_name} contributed {amount_text} towards \"{gift_item_name}\".\n\n"
        f"Progress: {progress_text} ({percent_funded:.0f}%)\n"
    )
    if message:
        text_body += f"\nMessage: {message}\n"
    text_body += f"\nOpen your registry: {registry_link}"

    message_html = ""
    if message:
        message_html = f'<p style="font-style: italic;">&ldquo;{html.escape(message)}&rdquo;</p>'
    content_html = f'''
    <p><strong>{html.escape(contributor_name)}</strong> contributed
       <strong>{html.escape(amount_text)}</strong> towards
       <strong>{html.escape(gift_item_name)}</strong>.</p>
    {message_html}
    <p>Progress: {html.escape(progress_text)}</p>
    <div style="background-color: #e5e7eb; border-radius: 8px; height: 12px; overflow: hidden;">
        <div style="background: #6366f1; height: 100%; width: {percent_funded:.0f}%;"></div>
    </div>
    '''
    html_body = _get_base_html_template(
        title="New contribution",
        content_html=content_html,
        button_text="Open registry",
        button_link=registry_link,
    )
    return send_email(to_email, subject, text_body, html_body)


def send_thank_you_email(
    to_email: str,
    contributor_name: str,
    amount: float,
    currency: str,
    registry_title: str,
    registry_link: str,
) -> bool:
    subject = f"Thank you for contributing to {registry_title}"
    amount_text = format_money(amount, currency)
    text_body = (
        f"Hi {contributor_name},\n\n"
        f"Thank you for your contribution of {amount_text} to \"{registry_title}\".\n\n"
        f"{registry_link}"
    )
    content_html = (
        f"<p>Hi {html.escape(contributor_name)},</p>"
        f"<p>Thank you for your contribution of <strong>{html.escape(amount_text)}</strong> "
        f"to <strong>{html.escape(registry_title)}</strong>.</p>"
    )
    html_body = _get_base_html_template(
        title="Thank you!",
        content_html=content_html,
        button_text="View registry",
        button_link=registry_link,
    )
    return send_email(to_email, subject, text_body, html_body)


def send_gift_item_added_email(
    to_email: str,
    registry_title: str,
    gift_item_name: str,
    added_by: str,
    registry_link: str,
) -> bool:
    subject = f"New item in {registry_title}"
    text_body = f"{added_by} added \"{gift_item_name}\" to \"{registry_title}\".\n\n{registry_link}"
    content_html = (
        f"<p><strong>{html.escape(added_by)}</strong> added "
        f"<strong>{html.escape(gift_item_name)}</strong> to your registry.</p>"
    )
    html_body = _get_base_html_template(
        title="New gift item",
        content_html=content_html,
        button_text="Open registry",
        button_link=registry_link,
    )
    return send_email(to_email, subject, text_body, html_body)


def send_registry_update_email(
    to_email: str,
    registry_title: str,
    summary: str,
    registry_link: str,
) -> bool:
    subject = f"Update on {registry_title}"
    text_body = f"{summary}\n\n{registry_link}"
    content_html = f"<p>{html.escape(summary)}</p>"
    html_body = _get_base_html_template(
        title=registry_title,
        content_html=content_html,
        button_text="Open registry",
        button_link=registry_link,
    )
    return send_email(to_email, subject, text_body, html_body)
