# billing/services/export_service.py
from __future__ import annotations
import logging
import os
import re
from pathlib import Path
from shutil import which
from typing import Optional, Union

import pdfkit  # utilisé si wkhtmltopdf dispo
from jinja2 import Environment, FileSystemLoader, select_autoescape

from billing.models.invoice import Invoice
from billing.services.calculator import format_money
from billing.services.history_service import format_date
from billing.services.settings_service import ROOT_DIR, Settings, load_settings

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates"
EXPORTS_DIR = ROOT_DIR / "exports"


def _slug(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r'[\\/:*?"<>|\n\r\t]', "_", text)
    text = re.sub(r"\s+", " ", text)
    return text or "Customer"


def _clean_path(p: str) -> str:
    """Corrige 'C\\:\\Program Files\\...' -> 'C:\\Program Files\\...' et normalise."""
    if not p:
        return ""
    p = p.strip().strip('"').strip("'")
    p = p.replace("\\:", ":")
    return os.path.normpath(p)


def _find_wkhtmltopdf(settings: Settings) -> Optional[str]:
    """
    Localise wkhtmltopdf :
    - variable d'env WKHTMLTOPDF
    - settings.json -> pdf.wkhtmltopdf_path
    - chemins Windows connus
    - PATH
    """
    candidates = [os.environ.get("WKHTMLTOPDF"), settings.pdf.wkhtmltopdf_path]
    for c in candidates:
        if c and Path(_clean_path(c)).is_file():
            return _clean_path(c)

    for c in (
        r"C:\Program Files\wkhtmltopdf\bin\wkhtmltopdf.exe",
        r"C:\Program Files (x86)\wkhtmltopdf\bin\wkhtmltopdf.exe",
    ):
        if Path(c).is_file():
            return c

    found = which("wkhtmltopdf")
    return _clean_path(found) if found else None


def _render_pdf_with_weasyprint(html: str, out_path: Path, base_url: Optional[str]) -> None:
    """Fallback WeasyPrint (si wkhtmltopdf absent)."""
    try:
        from weasyprint import HTML
    except ImportError as e:
        raise RuntimeError(
            "No wkhtmltopdf found and WeasyPrint is not installed. "
            "Install the 'pdf' extra (pip install weasyprint) or configure wkhtmltopdf."
        ) from e
    HTML(string=html, base_url=base_url).write_pdf(str(out_path))


class ExportService:
    """Impression d'une facture : HTML (Jinja2) puis PDF. Ne modifie jamais la facture."""

    def __init__(self, settings: Optional[Settings] = None, templates_dir: Union[str, Path] = TEMPLATES_DIR) -> None:
        self.settings = settings or load_settings()
        self.templates_dir = Path(templates_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.templates_dir)),
            autoescape=select_autoescape(["html", "xml"]),
        )

    def render_invoice_html(self, inv: Invoice) -> str:
        s = self.settings
        cur = s.currency_symbol

        ctx = {
            "invoice": {
                "number": inv.invoice_number,
                "date": format_date(inv.date, s.date_format),
                "customer_name": inv.customer_name,
                "customer_phone": inv.customer_phone,
                "lines": [
                    {
                        "code": ln.product.id,
                        "name": ln.product.name,
                        "qty": ln.quantity,
                        "unit_price": format_money(ln.product.price, cur),
                        "total": format_money(ln.line_total, cur),
                    } for ln in inv.items
                ],
                "subtotal": format_money(inv.subtotal, cur),
                "tax_amount": format_money(inv.tax_amount, cur),
                "grand_total": format_money(inv.grand_total, cur),
                "saved": not inv.is_draft,
            },
            "tax_pct": f"{(s.tax_rate * 100).normalize():f}",
            "company": s.company.model_dump(),
        }
        return self.env.get_template("invoice.html").render(**ctx)

    def export_invoice_pdf(self, inv: Invoice, out_dir: Optional[Union[str, Path]] = None) -> str:
        """
        Génère le PDF de la facture.
        Essaie wkhtmltopdf (pdfkit) en priorité, sinon fallback WeasyPrint.
        """
        html = self.render_invoice_html(inv)

        exports_dir = Path(out_dir) if out_dir else (EXPORTS_DIR / "invoices")
        exports_dir.mkdir(parents=True, exist_ok=True)
        out_path = exports_dir / f"{inv.invoice_number} ({_slug(inv.customer_name)}).pdf"
        base_url = str(self.templates_dir.resolve())

        wkhtml = _find_wkhtmltopdf(self.settings)
        if wkhtml:
            try:
                config = pdfkit.configuration(wkhtmltopdf=wkhtml)
                options = {"enable-local-file-access": None, "quiet": "", "encoding": "UTF-8"}
                pdfkit.from_string(html, str(out_path), options=options, configuration=config)
                return str(out_path)
            except OSError as e:
                logger.warning("wkhtmltopdf failed (%s), falling back to WeasyPrint", e)

        _render_pdf_with_weasyprint(html, out_path, base_url=base_url)
        return str(out_path)
