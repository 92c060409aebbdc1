"""
Invoice Service - subscription invoices drafted by an LLM with a deterministic fallback.

The model is asked for a JSON object with `html`, `text` and `subject`. Any
field it omits is taken from the fallback invoice; any error (transport,
parsing, missing JSON) returns the fallback invoice whole, so callers always
get something they can render and email.
"""
import html as html_lib
import json
import logging
import random
import re
from datetime import datetime
from typing import Optional, List, Dict, Any

import openai
from pydantic import BaseModel, Field

import settings
from models import utc_now
from services.service_status import ConfigurableService, ServiceConfigStatus

logger = logging.getLogger(__name__)

INVOICE_MODEL = "llama3-8b-instruct"
INVOICE_NUMBER_PATTERN = re.compile(r"^INV-\d{8}-\d{4}$")

SYSTEM_PROMPT = (
    "You are a professional invoice generator. You create beautiful, professional invoices "
    "in HTML format that are suitable for email delivery. Always include proper styling, company "
    "branding, and all necessary invoice details. Return your response as a JSON object with three "
    "fields: html (the full HTML invoice), text (plain text version), and subject (email subject line). "
    "Make sure the JSON is properly formatted and valid."
)


class InvoiceData(BaseModel):
    customer_name: str
    customer_email: str
    plan_name: str
    plan_description: str = ""
    amount: float
    interval: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    subscription_id: str
    invoice_date: datetime = Field(default_factory=utc_now)
    invoice_number: str


class GeneratedInvoice(BaseModel):
    html: str
    text: str
    subject: str


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    """INV-YYYYMMDD-XXXX with four random digits."""
    now = now or utc_now()
    return f"INV-{now.strftime('%Y%m%d')}-{random.randint(0, 9999):04d}"


def is_valid_invoice_number(value: str) -> bool:
    return bool(INVOICE_NUMBER_PATTERN.match(value or ""))


def prepare_invoice_data(user: Dict[str, Any], plan: Dict[str, Any], subscription_id: str) -> InvoiceData:
    """Invoice data from a user document and one entry of billing_service.get_products()."""
    return InvoiceData(
        customer_name=user.get("name") or user["email"],
        customer_email=user["email"],
        plan_name=plan["name"],
        plan_description=plan.get("description") or "",
        amount=plan["amount"],
        interval=plan.get("interval"),
        features=plan.get("features") or [],
        subscription_id=subscription_id,
        invoice_number=generate_invoice_number(),
    )


def _format_date(value: datetime) -> str:
    return value.strftime("%m/%d/%Y")


FALLBACK_CSS = """
    * { box-sizing: border-box; }
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; margin: 0; padding: 10px; background-color: #f5f5f5; line-height: 1.6; }
    .container { max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); overflow: hidden; }
    .header { background: #0061EB; color: white; padding: 30px 20px; text-align: center; }
    .header h1 { margin: 0 0 10px 0; font-size: 28px; font-weight: 600; }
    .header h2 { margin: 0; font-size: 20px; font-weight: 400; opacity: 0.9; }
    .content { padding: 30px 20px; }
    .invoice-details { display: flex; flex-direction: column; gap: 20px; margin-bottom: 30px; }
    @media (min-width: 600px) { .invoice-details { flex-direction: row; justify-content: space-between; } .invoice-info { text-align: right; } }
    .customer-info, .invoice-info { flex: 1; }
    .customer-info h3, .invoice-info h3 { margin: 0 0 10px 0; font-size: 16px; color: #333; }
    .customer-info p, .invoice-info p { margin: 0; font-size: 14px; color: #666; }
    .item { border-bottom: 1px solid #eee; padding: 20px 0; }
    .item h3 { margin: 0 0 10px 0; font-size: 18px; color: #333; }
    .item p { margin: 0 0 15px 0; color: #666; }
    .total { font-size: 18px; font-weight: bold; margin-top: 20px; padding-top: 20px; border-top: 2px solid #0061EB; color: #333; }
    .features strong { display: block; margin-bottom: 8px; color: #333; }
    .features ul { margin: 5px 0; padding-left: 20px; color: #666; }
    .support-section { margin-top: 30px; text-align: center; padding: 20px; background-color: #f8f9fa; border-radius: 8px; }
    .support-section p { margin: 0 0 15px 0; color: #666; font-size: 14px; }
    .contact-button { display: inline-block; background: #0061EB; color: white !important; text-decoration: none; padding: 12px 24px; border-radius: 6px; font-weight: 500; font-size: 14px; min-width: 140px; text-align: center; }
    .footer { margin-top: 20px; text-align: center; color: #666; font-size: 12px; }
    .footer p { margin: 5px 0; }
"""


def build_fallback_invoice(data: InvoiceData) -> GeneratedInvoice:
    """Deterministic invoice used whenever the model is unavailable or unusable."""
    esc = html_lib.escape
    brand = esc(settings.APP_NAME)
    support = settings.EMAIL_SENDER or "support@formanew.com"
    invoice_date = _format_date(data.invoice_date)
    features_html = "".join(f"<li>{esc(f)}</li>" for f in data.features)
    billed = f"<br><small>Billed {esc(data.interval)}ly</small>" if data.interval else ""

    html = f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Invoice - {esc(data.invoice_number)}</title>
  <style>{FALLBACK_CSS}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>{brand}</h1>
      <h2>Invoice</h2>
    </div>
    <div class="content">
      <div class="invoice-details">
        <div class="customer-info">
          <h3>Bill To:</h3>
          <p><strong>{esc(data.customer_name)}</strong><br>{esc(data.customer_email)}</p>
        </div>
        <div class="invoice-info">
          <h3>Invoice Details:</h3>
          <p><strong>Invoice #:</strong> {esc(data.invoice_number)}<br>
          <strong>Date:</strong> {invoice_date}<br>
          <strong>Subscription ID:</strong> {esc(data.subscription_id)}</p>
        </div>
      </div>
      <div class="item">
        <h3>{esc(data.plan_name)}</h3>
        <p>{esc(data.plan_description)}</p>
        <div class="features">
          <strong>Features included:</strong>
          <ul>{features_html}</ul>
        </div>
        <div class="total">
          <strong>Total: ${data.amount}</strong>{billed}
        </div>
      </div>
      <div class="support-section">
        <p>Thank you for your subscription!</p>
        <p>If you have any questions about this invoice, please contact our support team.</p>
        <a href="mailto:{esc(support)}" class="contact-button">Contact Support</a>
      </div>
      <div class="footer">
        <p>{brand}</p>
        <p>This is an automatically generated invoice.</p>
      </div>
    </div>
  </div>
</body>
</html>"""

    features_text = "\n".join(f"- {f}" for f in data.features)
    billed_text = f"Billed {data.interval}ly" if data.interval else ""
    text = f"""INVOICE - {data.invoice_number}

{settings.APP_NAME}
Invoice Date: {invoice_date}

Bill To:
{data.customer_name}
{data.customer_email}

Subscription ID: {data.subscription_id}

ITEM:
{data.plan_name}
{data.plan_description}

Features included:
{features_text}

TOTAL: ${data.amount}
{billed_text}

Thank you for your subscription!
If you have any questions, please contact our support team at {support}
"""

    return GeneratedInvoice(
        html=html,
        text=text,
        subject=f"Invoice #{data.invoice_number} - {data.plan_name} Subscription",
    )


def build_invoice_prompt(data: InvoiceData) -> str:
    support = settings.EMAIL_SENDER or "support@formanew.com"
    return f"""Generate a professional invoice for the following subscription:

Customer Information:
- Name: {data.customer_name}
- Email: {data.customer_email}

Plan Details:
- Plan Name: {data.plan_name}
- Description: {data.plan_description}
- Amount: ${data.amount}
- Billing Interval: {data.interval or 'one-time'}
- Features: {', '.join(data.features)}

Invoice Details:
- Invoice Number: {data.invoice_number}
- Invoice Date: {_format_date(data.invoice_date)}
- Subscription ID: {data.subscription_id}

Please create a professional invoice with:
1. Company header with "{settings.APP_NAME}" branding
2. Customer and invoice details clearly displayed
3. Itemized breakdown of the subscription
4. Professional styling with blue color scheme (#0061EB)
5. Mobile-responsive design
6. Clear call-to-action for payment or support

IMPORTANT: For the Contact Support button, use exactly this HTML structure:
<a href="mailto:{support}" class="contact-button">Contact Support</a>

Do NOT add any inline styles to the contact-button class. The styling will be handled by CSS injection.

Return the response as a JSON object with html, text, and subject fields."""


def parse_invoice_response(content: Optional[str], fallback: GeneratedInvoice) -> GeneratedInvoice:
    """Pull the first {...} block out of the model reply; fill gaps from `fallback`."""
    if not content:
        raise ValueError("No AI response received")
    match = re.search(r"\{[\s\S]*\}", content)
    if not match:
        raise ValueError("No JSON found in AI response")
    parsed = json.loads(match.group(0))
    return GeneratedInvoice(
        html=parsed.get("html") or fallback.html,
        text=parsed.get("text") or fallback.text,
        subject=parsed.get("subject") or fallback.subject,
    )


class InvoiceService(ConfigurableService):
    SERVICE_NAME = "Invoice Service (DigitalOcean GradientAI Serverless Inference)"
    DESCRIPTION = "The following features are impacted: automatic invoice generation and emailing"

    def __init__(self):
        self._client: Optional[openai.AsyncOpenAI] = None
        self._api_key: Optional[str] = None
        self._last_connection_error: Optional[str] = None

    @property
    def client(self) -> Optional[openai.AsyncOpenAI]:
        api_key = settings.DO_INFERENCE_API_KEY
        if not api_key:
            return None
        if self._client is None or self._api_key != api_key:
            self._client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=settings.INFERENCE_BASE_URL,
                timeout=30.0,
                max_retries=3,
            )
            self._api_key = api_key
        return self._client

    def is_configured(self) -> bool:
        return bool(settings.DO_INFERENCE_API_KEY)

    async def generate_invoice(self, data: InvoiceData) -> GeneratedInvoice:
        client = self.client
        if client is None:
            raise ValueError("Invoice service not configured. Check configuration.")

        fallback = build_fallback_invoice(data)
        try:
            response = await client.chat.completions.create(
                model=INVOICE_MODEL,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_invoice_prompt(data)},
                ],
                max_tokens=2000,
                temperature=0.1,
            )
        except Exception as e:
            logger.error(f"Error generating invoice with AI: {e}")
            return fallback

        if not response or not response.choices:
            logger.info("No valid response received, using fallback invoice")
            return fallback

        content = response.choices[0].message.content
        try:
            return parse_invoice_response(content, fallback)
        except (ValueError, json.JSONDecodeError) as e:
            logger.error(f"Error parsing AI invoice response: {e}; first 500 chars: {(content or '')[:500]}")
            return fallback

    async def check_connection(self) -> bool:
        client = self.client
        if client is None:
            self._last_connection_error = "DO_INFERENCE_API_KEY not configured"
            return False
        try:
            await client.models.list()
            return True
        except Exception as e:
            self._last_connection_error = str(e)
            return False

    async def check_configuration(self) -> ServiceConfigStatus:
        if not self.is_configured():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=False,
                connected=False,
                description=self.DESCRIPTION,
                error="DO_INFERENCE_API_KEY not configured",
                config_to_review=["DO_INFERENCE_API_KEY"],
            )

        if not await self.check_connection():
            return ServiceConfigStatus(
                name=self.SERVICE_NAME,
                configured=True,
                connected=False,
                description=self.DESCRIPTION,
                error=self._last_connection_error,
                config_to_review=["DO_INFERENCE_API_KEY"],
            )

        return ServiceConfigStatus(
            name=self.SERVICE_NAME, configured=True, connected=True, description=self.DESCRIPTION
        )


invoice_service = InvoiceService()
