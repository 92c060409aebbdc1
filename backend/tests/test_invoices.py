"""
Invoices:
- invoice numbers, LLM response parsing and the deterministic fallback
- PDF html preparation
- storing to Spaces and emailing with the PDF attached
"""
import base64
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

from services.invoice_service import (
    GeneratedInvoice,
    InvoiceData,
    build_fallback_invoice,
    generate_invoice_number,
    is_valid_invoice_number,
    parse_invoice_response,
    prepare_invoice_data,
)
from services.service_status import ServiceConfigStatus

USER = {"user_id": "user-1", "email": "ann@example.com", "name": "Ann Lee"}
PRO = {"price_id": "price_pro", "name": "Pro", "amount": 12.0, "interval": "month",
       "description": "Everything", "features": ["Unlimited <companies>"]}
OK = ServiceConfigStatus(name="x", configured=True, connected=True)


def _data(**overrides) -> InvoiceData:
    fields = dict(
        customer_name="Ann Lee",
        customer_email="ann@example.com",
        plan_name="Pro",
        amount=12.0,
        interval="month",
        features=["Unlimited <companies>"],
        subscription_id="s1",
        invoice_number="INV-20240501-0042",
        invoice_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return InvoiceData(**fields)


def test_invoice_number_format():
    number = generate_invoice_number(datetime(2024, 5, 1, tzinfo=timezone.utc))
    assert number.startswith("INV-20240501-")
    assert is_valid_invoice_number(number)
    assert not is_valid_invoice_number("INV-2024-1")
    assert not is_valid_invoice_number("../INV-20240501-0042")


def test_prepare_invoice_data_falls_back_to_email_for_name():
    data = prepare_invoice_data({"user_id": "u", "email": "x@y.co"}, PRO, "s1")
    assert data.customer_name == "x@y.co"
    assert data.features == ["Unlimited <companies>"]
    assert is_valid_invoice_number(data.invoice_number)


def test_fallback_invoice_escapes_and_names_invoice():
    invoice = build_fallback_invoice(_data())
    assert "INV-20240501-0042" in invoice.subject
    assert "Pro" in invoice.subject
    assert "Unlimited &lt;companies&gt;" in invoice.html
    assert "05/01/2024" in invoice.text


def test_parse_invoice_response_fills_missing_fields_from_fallback():
    fallback = GeneratedInvoice(html="<p>fb</p>", text="fb", subject="Fallback")
    reply = 'Sure! Here it is:\n{"html": "<h1>Invoice</h1>", "subject": ""}\nThanks'
    parsed = parse_invoice_response(reply, fallback)
    assert parsed.html == "<h1>Invoice</h1>"
    assert parsed.text == "fb"
    assert parsed.subject == "Fallback"

    with pytest.raises(ValueError):
        parse_invoice_response("no json here", fallback)


@pytest.mark.asyncio
async def test_generate_invoice_uses_fallback_when_model_fails(monkeypatch):
    import settings
    from services.invoice_service import InvoiceService

    monkeypatch.setattr(settings, "DO_INFERENCE_API_KEY", "key")
    service = InvoiceService()
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("timeout"))
    service._client, service._api_key = client, "key"

    invoice = await service.generate_invoice(_data())

    assert invoice == build_fallback_invoice(_data())


@pytest.mark.asyncio
async def test_invoice_service_reports_missing_key(monkeypatch):
    import settings
    from services.invoice_service import InvoiceService

    monkeypatch.setattr(settings, "DO_INFERENCE_API_KEY", None)
    status = await InvoiceService().check_configuration()
    assert status.configured is False
    assert status.config_to_review == ["DO_INFERENCE_API_KEY"]


def test_prepare_invoice_html_wraps_fragments_and_injects_into_documents():
    from services.pdf_service import prepare_invoice_html

    wrapped = prepare_invoice_html("<h1>Invoice</h1>")
    assert wrapped.startswith("<!DOCTYPE html>")
    assert "<h1>Invoice</h1>" in wrapped

    document = "<!DOCTYPE html><html><head></head><body></body></html>"
    injected = prepare_invoice_html(document)
    assert injected.index("<style") < injected.index("</head>")


def test_invoice_email_makes_contact_button_table_based():
    from services.email_templates import build_invoice_email

    email = build_invoice_email(
        '<a href="mailto:help@example.com" class="contact-button">Contact Support</a>',
        "text", "Invoice #1", "Ann", "Pro", 12.0, "INV-20240501-0042",
    )
    assert email["subject"] == "Invoice #1"
    assert 'role="presentation"' in email["html"]
    assert "mailto:help@example.com" in email["html"]


def test_attachment_name_collapses_whitespace_in_customer_name():
    from services.invoice_delivery import attachment_name

    assert attachment_name("INV-20260101-0001", "Ann  Lee\tSmith") == "invoice-INV-20260101-0001-Ann-Lee-Smith.pdf"


# ----------------------------------------------------------------------------
# Delivery
# ----------------------------------------------------------------------------

@pytest.fixture
def delivery(monkeypatch):
    import settings
    from services import invoice_delivery

    monkeypatch.setattr(settings, "STRIPE_FREE_PRICE_ID", "price_free")
    monkeypatch.setattr(settings, "STRIPE_PRO_PRICE_ID", "price_pro")

    repos = AsyncMock()
    repos.subscription.find_by_user_id.return_value = {"subscription_id": "s1", "user_id": "user-1", "plan": "PRO"}

    billing = MagicMock()
    billing.get_products = AsyncMock(return_value=[{**PRO, "price_id": "price_free", "name": "Free", "amount": 0}, PRO])

    invoices = MagicMock()
    invoices.check_configuration = AsyncMock(return_value=OK)
    invoices.generate_invoice = AsyncMock(return_value=GeneratedInvoice(html="<p>inv</p>", text="inv", subject="Invoice"))

    storage = MagicMock()
    storage.check_configuration = AsyncMock(return_value=OK)
    storage.upload_file = AsyncMock()

    pdf = MagicMock()
    pdf.generate_invoice_pdf = AsyncMock(return_value=b"%PDF")

    email = MagicMock()
    email.is_email_enabled.return_value = True
    email.send_template = AsyncMock()

    with patch.object(invoice_delivery, "repos", repos), patch.object(
        invoice_delivery, "billing_service", billing
    ), patch.object(invoice_delivery, "invoice_service", invoices), patch.object(
        invoice_delivery, "storage_service", storage
    ), patch.object(invoice_delivery, "pdf_service", pdf), patch.object(invoice_delivery, "email_service", email):
        yield MagicMock(
            module=invoice_delivery, repos=repos, invoices=invoices, storage=storage, pdf=pdf, email=email
        )


@pytest.mark.asyncio
async def test_store_invoice_uploads_private_pdf_under_user(delivery):
    result = await delivery.module.store_invoice(USER)

    assert result["success"] is True
    assert result["plan_name"] == "Pro"
    assert result["amount"] == 12.0
    folder, key, body = delivery.storage.upload_file.await_args[0]
    assert folder == "invoices"
    assert key == f"user-1/{result['invoice_number']}.pdf"
    assert body == b"%PDF"
    assert delivery.storage.upload_file.await_args.kwargs["acl"] == "private"


@pytest.mark.asyncio
async def test_store_invoice_requires_storage(delivery):
    delivery.storage.check_configuration.return_value = ServiceConfigStatus(name="s", configured=False)
    with pytest.raises(delivery.module.InvoiceDeliveryError) as exc:
        await delivery.module.store_invoice(USER)
    assert exc.value.message == "Storage service not configured or connected"


@pytest.mark.asyncio
async def test_store_invoice_pdf_failure(delivery):
    delivery.pdf.generate_invoice_pdf.side_effect = RuntimeError("chromium missing")
    with pytest.raises(delivery.module.InvoiceDeliveryError) as exc:
        await delivery.module.store_invoice(USER)
    assert exc.value.message == "Failed to generate PDF invoice"
    delivery.storage.upload_file.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_plan_is_not_found(delivery):
    delivery.repos.subscription.find_by_user_id.return_value = {"subscription_id": "s1", "plan": "ENTERPRISE"}
    with pytest.raises(delivery.module.InvoiceDeliveryError) as exc:
        await delivery.module.store_invoice(USER)
    assert (exc.value.status_code, exc.value.message) == (404, "Plan details not found")


@pytest.mark.asyncio
async def test_planless_record_is_set_to_free(delivery):
    delivery.repos.subscription.find_by_user_id.return_value = {"subscription_id": "s1", "plan": None}
    delivery.repos.subscription.update_by_user_id.return_value = {"subscription_id": "s1", "plan": "FREE"}

    result = await delivery.module.store_invoice(USER)

    delivery.repos.subscription.update_by_user_id.assert_awaited_once_with(
        "user-1", {"plan": "FREE", "status": "ACTIVE"}
    )
    assert result["plan_name"] == "Free"


@pytest.mark.asyncio
async def test_missing_record_without_billing_is_an_error(delivery):
    delivery.repos.subscription.find_by_user_id.return_value = None
    with patch.object(delivery.module, "ensure_subscription", AsyncMock(return_value=None)):
        with pytest.raises(delivery.module.InvoiceDeliveryError) as exc:
            await delivery.module.store_invoice(USER)
    assert exc.value.message == "Billing service not configured. Cannot create subscription."


@pytest.mark.asyncio
async def test_email_invoice_attaches_pdf(delivery):
    result = await delivery.module.email_invoice(USER)

    assert result["pdf_attached"] is True
    assert result["message"] == "Invoice generated and sent to ann@example.com"
    recipient, template = delivery.email.send_template.await_args[0]
    assert recipient == "ann@example.com"
    assert template["subject"] == "Invoice"
    attachment = delivery.email.send_template.await_args.kwargs["attachments"][0]
    assert attachment["filename"] == f"invoice-{result['invoice_number']}-Ann-Lee.pdf"
    assert attachment["content"] == b"%PDF"


@pytest.mark.asyncio
async def test_email_invoice_sends_without_pdf_when_rendering_fails(delivery):
    delivery.pdf.generate_invoice_pdf.side_effect = RuntimeError("no browser")
    result = await delivery.module.email_invoice(USER)
    assert result["pdf_attached"] is False
    assert delivery.email.send_template.await_args.kwargs["attachments"] == []


@pytest.mark.asyncio
async def test_email_invoice_refuses_when_email_disabled(delivery):
    delivery.email.is_email_enabled.return_value = False
    with pytest.raises(delivery.module.InvoiceDeliveryError) as exc:
        await delivery.module.email_invoice(USER)
    assert exc.value.message == "Email service is disabled"


@pytest.mark.asyncio
async def test_postmark_attachments_are_base64(monkeypatch):
    import settings
    from services.email_service import EmailService

    monkeypatch.setattr(settings, "EMAIL_SENDER", "billing@example.com")
    service = EmailService()
    client = MagicMock()
    client.emails.send.return_value = {"MessageID": "m-1"}
    with patch.object(EmailService, "client", new=client):
        message_id = await service.send_email(
            "ann@example.com", "Invoice", "<p>hi</p>", "hi",
            attachments=[{"filename": "inv.pdf", "content": b"%PDF", "content_type": "application/pdf"}],
        )

    assert message_id == "m-1"
    params = client.emails.send.call_args.kwargs
    assert params["From"] == "billing@example.com"
    assert params["Attachments"] == [
        {"Name": "inv.pdf", "Content": base64.b64encode(b"%PDF").decode("ascii"), "ContentType": "application/pdf"}
    ]
