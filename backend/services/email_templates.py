"""
Email Templates - Branded HTML + plaintext bodies for transactional emails.
Includes: action button (verify, magic link, reset, client portal), information,
subscription updated, invoice.
"""
from typing import Dict, Any, List, Optional
import html
import re

import settings

BRAND_COLOR_PRIMARY = "#0061EB"
LINK_COLOR = "#0070f3"

_CONTACT_BUTTON = re.compile(
    r"""<a(?=[^>]*class=['"]contact-button['"])[^>]*href=['"]mailto:([^'"]*)['"][^>]*>.*?</a>""",
    re.IGNORECASE | re.DOTALL,
)


def _layout(title: str, content: str) -> str:
    """Wrap content with the branded header."""
    return f"""
    <html>
    <body style="font-family: 'Segoe UI', Arial, sans-serif; line-height: 1.6; color: #1e293b; margin: 0;">
        <div style="background-color: {BRAND_COLOR_PRIMARY}; padding: 32px 0;">
            <p style="color: #fff; font-size: 24px; text-align: center; margin: 0;">
                {html.escape(settings.APP_NAME)} - {html.escape(title)}
            </p>
        </div>
        {content}
    </body>
    </html>
    """


def _card(content: str, max_width: int = 480) -> str:
    return f"""
        <div style="background: #fff; border-radius: 8px; max-width: {max_width}px; margin: 32px auto; padding: 0; text-align: center;">
            {content}
        </div>
    """


def build_action_button_email(
    title: str,
    button_url: str,
    button_text: str,
    greeting_text: str,
    fallback_text: str,
    info_text: Optional[str] = None,
) -> Dict[str, str]:
    """
    Email with a single prominent call to action and a plain link fallback.

    Returns dict with 'subject', 'html', 'text' keys.
    """
    info_html = f'<p style="text-align: center;">{html.escape(info_text)}</p>' if info_text else ""
    body = _card(f"""
            <p style="text-align: center;">{html.escape(greeting_text)}</p>
            <a href="{html.escape(button_url)}"
               style="background: {LINK_COLOR}; color: #fff; border-radius: 8px; padding: 10px 20px;
                      font-weight: bold; margin: 20px 0; display: inline-block; text-decoration: none;">
                {html.escape(button_text)}
            </a>
            {info_html}
            <p style="font-size: 14px; color: #555; margin: 32px 0 0 0; text-align: center;">{html.escape(fallback_text)}</p>
            <p style="word-break: break-all; font-size: 14px; text-align: center; margin-top: 0;">
                <a href="{html.escape(button_url)}" style="color: {LINK_COLOR};">{html.escape(button_url)}</a>
            </p>
    """)

    text_lines = [greeting_text, "", f"{button_text}: {button_url}"]
    if info_text:
        text_lines += ["", info_text]
    text_lines += ["", fallback_text, button_url]

    return {
        "subject": title,
        "html": _layout(title, body),
        "text": "\n".join(text_lines),
    }


def build_information_email(
    title: str,
    greeting_text: str,
    info_text: str,
    second_info_text: Optional[str] = None,
) -> Dict[str, str]:
    """Plain notice without a call to action."""
    second_html = f'<p style="text-align: center;">{html.escape(second_info_text)}</p>' if second_info_text else ""
    body = _card(f"""
            <p style="text-align: center;">{html.escape(greeting_text)}</p>
            <p style="font-size: 14px; color: #555; margin: 32px 0 0 0; text-align: center;">{html.escape(info_text)}</p>
            {second_html}
    """)
    text = "\n\n".join(t for t in (greeting_text, info_text, second_info_text) if t)
    return {"subject": title, "html": _layout(title, body), "text": text}


def build_subscription_updated_email(plan: Dict[str, Any]) -> Dict[str, str]:
    """Notify the user that their plan changed. `plan` is one entry of get_products()."""
    title = "Your subscription was updated"
    interval = plan.get("interval") or "one-time"
    features: List[str] = plan.get("features") or []
    features_html = "".join(
        f'<p style="margin: 0 0 0 16px; padding: 0;">&bull; {html.escape(f)}</p>' for f in features
    )
    body = _card(f"""
        <div style="padding: 32px 24px; text-align: left;">
            <p style="text-align: center; margin: 0 0 24px 0;">
                Your subscription plan was updated to <b>{html.escape(plan.get('name', ''))}</b>.<br>
                Thank you for using our service!
            </p>
            <div style="background: #f4f8ff; border: 1px solid #dbeafe; border-radius: 8px; margin: 24px 0; padding: 16px;">
                <p style="color: {BRAND_COLOR_PRIMARY}; font-weight: bold; font-size: 18px; margin: 0 0 12px 0;">Plan Details</p>
                <p><b>Name:</b> {html.escape(plan.get('name', ''))}</p>
                <p><b>Description:</b> {html.escape(plan.get('description') or '')}</p>
                <p><b>Price:</b> ${plan.get('amount', 0)} / {html.escape(interval)}</p>
                <p style="margin-bottom: 0;"><b>Features:</b></p>
                {features_html}
            </div>
        </div>
    """)

    text = f"""Your subscription plan was updated to {plan.get('name', '')}.
Thank you for using our service!

PLAN DETAILS
------------
Name: {plan.get('name', '')}
Description: {plan.get('description') or ''}
Price: ${plan.get('amount', 0)} / {interval}
Features:
""" + "\n".join(f"  - {f}" for f in features)

    return {"subject": title, "html": _layout(title, body), "text": text}


def make_contact_button_email_safe(invoice_html: str) -> str:
    """Replace the invoice's mailto contact link with a table-based button mail clients render."""
    def _button(match) -> str:
        address = match.group(1)
        return f"""<table role="presentation" border="0" cellpadding="0" cellspacing="0" style="margin: 16px auto;">
      <tr>
        <td align="center" bgcolor="{BRAND_COLOR_PRIMARY}" style="border-radius:6px;">
          <a href="mailto:{address}" target="_blank" style="display:inline-block;padding:12px 24px;font-size:14px;font-weight:500;color:#fff;text-decoration:none;border-radius:6px;background:{BRAND_COLOR_PRIMARY};">Contact Support</a>
        </td>
      </tr>
    </table>"""

    return _CONTACT_BUTTON.sub(_button, invoice_html)


def build_invoice_email(
    invoice_html: str,
    invoice_text: str,
    subject: str,
    customer_name: str,
    plan_name: str,
    amount: float,
    invoice_number: str,
) -> Dict[str, str]:
    """Invoice email embedding the generated invoice; the PDF goes as attachment."""
    from_email = settings.EMAIL_SENDER or "support@formanew.com"
    body = _card(f"""
        <div style="padding: 32px 24px;">
            <p style="text-align: center; margin: 0 0 24px 0;">Hello {html.escape(customer_name)},</p>
            <p style="text-align: center; margin: 0 0 24px 0;">
                Thank you for your subscription to <b>{html.escape(plan_name)}</b>.
                Your invoice for ${amount} is ready and attached to this email as a PDF file.
            </p>
            <hr style="margin: 24px 0;">
            <div style="border: 1px solid #e0e0e0; border-radius: 8px; padding: 20px; background-color: #fafafa; text-align: left;">
                {make_contact_button_email_safe(invoice_html)}
            </div>
            <hr style="margin: 24px 0;">
            <p style="font-size: 14px; color: #666; text-align: center; margin: 24px 0 0 0;">
                A PDF version of this invoice is attached to this email for your records.
            </p>
            <p style="font-size: 14px; color: #666; text-align: center; margin: 8px 0 0 0;">
                If you have any questions about this invoice, please contact us at {html.escape(from_email)}.
            </p>
            <p style="font-size: 14px; color: #666; text-align: center; margin: 8px 0 0 0;">
                Thank you for choosing {html.escape(settings.APP_NAME)}!
            </p>
        </div>
    """, max_width=600)

    text = f"""Hello {customer_name},

Thank you for your subscription to {plan_name}. Your invoice for ${amount} is ready and attached as a PDF.

{invoice_text}

If you have any questions about this invoice, please contact us at {from_email}.
"""
    return {
        "subject": subject,
        "html": _layout(f"Invoice #{invoice_number} - {plan_name}", body),
        "text": text,
    }
