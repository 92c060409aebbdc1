"""
PDF Service - renders invoice HTML to A4 PDF with headless Chromium (playwright).

One browser is launched on first use and reused for the life of the process;
each render opens and closes its own page. Call `close()` on shutdown.
"""
import asyncio
import logging
from typing import Optional

from playwright.async_api import async_playwright, Browser, Playwright, Error as PlaywrightError

logger = logging.getLogger(__name__)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
]

PAGE_MARGIN = {"top": "20mm", "right": "20mm", "bottom": "20mm", "left": "20mm"}

INVOICE_PRINT_CSS = """
    * { box-sizing: border-box; }
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; margin: 0; padding: 10px; background-color: #f5f5f5; line-height: 1.6; }
    .container { max-width: 600px; margin: 0 auto; background: white; border-radius: 8px; box-shadow: 0 2px 10px rgba(0,0,0,0.1); overflow: hidden; }
    .header { background: #0061EB; color: white; padding: 30px 20px; text-align: center; }
    .content { padding: 30px 20px; }
    .total { font-size: 18px; font-weight: bold; margin-top: 20px; padding-top: 20px; border-top: 2px solid #0061EB; color: #333; }
    .support-section { margin-top: 30px; text-align: center; padding: 20px; background-color: #f8f9fa; border-radius: 8px; }
    @media print {
      body { margin: 0; padding: 0; background: white !important; }
      .container { max-width: none !important; margin: 0 !important; box-shadow: none !important; border-radius: 0 !important; }
      .header, .content, .support-section { page-break-inside: avoid; break-inside: avoid; }
      .contact-button { display: none !important; }
      @page { margin: 20mm; size: A4; }
    }
"""

CONTACT_BUTTON_OVERRIDE = """<style>
    .contact-button, a.contact-button, a[class*="contact-button"], a[href*="mailto:"],
    .support-section .contact-button, .support-section a[href*="mailto"] {
      display: inline-block !important; background: #0061EB !important; background-color: #0061EB !important;
      color: #ffffff !important; text-decoration: none !important; padding: 12px 24px !important;
      border-radius: 6px !important; font-weight: 500 !important; font-size: 14px !important;
      min-width: 140px !important; text-align: center !important; border: 0 !important;
      box-sizing: border-box !important; margin: 0 !important; line-height: 1.2 !important;
    }
    @media (max-width: 480px) {
      .contact-button, a.contact-button, a[href*="mailto:"] {
        display: block !important; width: 100% !important; margin-top: 10px !important;
      }
    }
</style>"""


class PdfGenerationError(Exception):
    """Raised when Chromium cannot render the document."""
    pass


def prepare_invoice_html(html: str) -> str:
    """Wrap fragments in a full document; inject the button override into full documents."""
    if not html.strip().upper().startswith("<!DOCTYPE"):
        return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Invoice</title>
  <style>{INVOICE_PRINT_CSS}</style>
</head>
<body>
{html}
</body>
</html>"""

    for marker in ("</head>", "</html>"):
        if marker in html:
            return html.replace(marker, CONTACT_BUTTON_OVERRIDE + marker, 1)
    return html + CONTACT_BUTTON_OVERRIDE


class PdfService:
    def __init__(self):
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def _get_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=True, args=LAUNCH_ARGS)
                logger.info("Headless Chromium launched for PDF rendering")
            return self._browser

    async def generate_pdf(self, html: str, wait_ms: int = 0) -> bytes:
        try:
            browser = await self._get_browser()
            page = await browser.new_page(
                viewport={"width": 1200, "height": 800}, device_scale_factor=2
            )
        except PlaywrightError as e:
            raise PdfGenerationError(f"Could not start browser: {e}")

        try:
            await page.set_content(html, wait_until="networkidle", timeout=30000)
            if wait_ms:
                await page.wait_for_timeout(wait_ms)
            return await page.pdf(
                format="A4",
                margin=PAGE_MARGIN,
                print_background=True,
                prefer_css_page_size=False,
                display_header_footer=False,
            )
        except PlaywrightError as e:
            raise PdfGenerationError(f"PDF rendering failed: {e}")
        finally:
            await page.close()

    async def generate_invoice_pdf(self, html: str) -> bytes:
        """Render an invoice (fragment or full document) to PDF bytes."""
        return await self.generate_pdf(prepare_invoice_html(html), wait_ms=2000)

    async def is_available(self) -> bool:
        try:
            browser = await self._get_browser()
            page = await browser.new_page()
            await page.set_content("<html><body><h1>Test</h1></body></html>")
            await page.close()
            return True
        except PlaywrightError as e:
            logger.error(f"PDF service not available: {e}")
            return False

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info("PDF browser closed")


pdf_service = PdfService()
