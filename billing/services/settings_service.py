from __future__ import annotations
import json
import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

ROOT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = ROOT_DIR / "data"
SETTINGS_JSON = DATA_DIR / "settings.json"


class CompanySettings(BaseModel):
    name: str = "Bapa Sitaram Mini Oil Mill"
    address: str = ""
    phone: str = ""
    gstin: str = ""


class PdfSettings(BaseModel):
    wkhtmltopdf_path: Optional[str] = None


class Settings(BaseModel):
    tax_rate: Decimal = Decimal("0.05")  # GST
    invoice_prefix: str = "BSMOM"
    date_format: str = "%d/%m/%Y"  # date courte en-IN
    currency_symbol: str = "₹"
    company: CompanySettings = Field(default_factory=CompanySettings)
    pdf: PdfSettings = Field(default_factory=PdfSettings)


def _load_json(path: Union[str, Path]):
    p = Path(path)
    if not p.exists():
        return None
    try:
        return json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable settings file %s (%s), using defaults", p, e)
        return None


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Charge data/settings.json (ou $BILLING_SETTINGS).
    Fichier absent ou invalide -> valeurs par défaut.
    """
    path = path or os.environ.get("BILLING_SETTINGS") or SETTINGS_JSON
    raw = _load_json(path)
    if not isinstance(raw, dict):
        return Settings()
    try:
        return Settings.model_validate(raw)
    except ValidationError as e:
        logger.warning("Invalid settings in %s, using defaults: %s", path, e)
        return Settings()
