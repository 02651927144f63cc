"""
Resolucion de IVA para la facturacion.

- Pais del vendedor (home country): siempre grava, con o sin numero de IVA.
- Otro pais UE con numero de IVA: se valida contra VIES; si VIES responde 5xx o hay
  error de red, se usa la validacion local de formato y se marca used_fallback=True
  para que la orden quede en revision manual.
- Fuera de la UE: este esquema no aplica (taxable=None, decide el llamador).

Nunca bloquea el checkout por indisponibilidad de VIES.
"""
import logging
import re
from typing import Optional

import requests

from ..core.schemas import VatDecision

logger = logging.getLogger(__name__)

EU_COUNTRIES = {
    "AT", "BE", "BG", "HR", "CY", "CZ", "DK", "EE", "FI", "FR", "DE", "GR", "HU", "IE",
    "IT", "LV", "LT", "LU", "MT", "NL", "PL", "PT", "RO", "SK", "SI", "ES", "SE",
}

# (min, max, patron) del numero sin el prefijo del pais
VAT_FORMATS = {
    "AT": (9, 9, r"^U\d{8}$"),
    "BE": (10, 10, r"^\d{10}$"),
    "BG": (9, 10, r"^\d{9,10}$"),
    "HR": (11, 11, r"^\d{11}$"),
    "CY": (9, 9, r"^\d{8}[A-Z]$"),
    "CZ": (8, 10, r"^\d{8,10}$"),
    "DK": (8, 8, r"^\d{8}$"),
    "EE": (9, 9, r"^\d{9}$"),
    "FI": (8, 8, r"^\d{8}$"),
    "FR": (11, 11, r"^[A-Z0-9]{2}\d{9}$"),
    "DE": (9, 9, r"^\d{9}$"),
    "GR": (9, 9, r"^\d{9}$"),
    "HU": (8, 8, r"^\d{8}$"),
    "IE": (8, 9, r"^\d{7}[A-Z]{1,2}$"),
    "IT": (11, 11, r"^\d{11}$"),
    "LV": (11, 11, r"^\d{11}$"),
    "LT": (9, 12, r"^\d{9}(\d{3})?$"),
    "LU": (8, 8, r"^\d{8}$"),
    "MT": (8, 8, r"^\d{8}$"),
    "NL": (12, 12, r"^\d{9}B\d{2}$"),
    "PL": (10, 10, r"^\d{10}$"),
    "PT": (9, 9, r"^\d{9}$"),
    "RO": (2, 10, r"^\d{2,10}$"),
    "SK": (10, 10, r"^\d{10}$"),
    "SI": (8, 8, r"^\d{8}$"),
    "ES": (9, 9, r"^[A-Z0-9]\d{7}[A-Z0-9]$"),
    "SE": (12, 12, r"^\d{12}$"),
}

# VIES usa EL para Grecia
_VIES_PREFIX = {"GR": "EL"}


def clean_vat_number(country_code: str, vat_number: str) -> str:
    cleaned = re.sub(r"[\s\-.]", "", vat_number or "").upper()
    for prefix in {country_code, _VIES_PREFIX.get(country_code, country_code)}:
        if cleaned.startswith(prefix):
            return cleaned[len(prefix):]
    return cleaned


def check_vat_format(country_code: str, number: str) -> Optional[str]:
    """Devuelve None si el formato es valido, o el mensaje de error."""
    fmt = VAT_FORMATS.get(country_code)
    if not fmt:
        return "Unknown country code format"
    lo, hi, pattern = fmt
    if len(number) < lo or len(number) > hi:
        size = f"{lo}" if lo == hi else f"{lo}-{hi}"
        return f"VAT number should be {size} characters for {country_code}"
    if not re.match(pattern, number):
        return "VAT number format is incorrect"
    return None


class VatResolver:
    def __init__(self, home_country: str, base_url: str, timeout: float = 10.0, session=None):
        self.home_country = home_country.upper()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self, country_code: str, vat_number: Optional[str] = None) -> VatDecision:
        country = (country_code or "").strip().upper()
        number = clean_vat_number(country, vat_number) if vat_number else None
        full = f"{country}{number}" if number else None

        # 1) Pais propio: siempre con IVA
        if country == self.home_country:
            return VatDecision(
                country_code=country,
                vat_number=full,
                taxable=True,
                error="Domestic companies must pay VAT regardless of VAT ID" if number else None,
            )

        # 2) Fuera de la UE: fuera de este esquema
        if country not in EU_COUNTRIES:
            return VatDecision(
                country_code=country,
                vat_number=full,
                taxable=None,
                error="VAT validation is only available for EU countries" if number else None,
            )

        # 3) UE sin numero: venta B2C con IVA
        if not number:
            return VatDecision(country_code=country, taxable=True)

        # 4) UE con numero: VIES, con fallback de formato
        url = f"{self.base_url}/ms/{_VIES_PREFIX.get(country, country)}/vat/{number}"
        try:
            resp = self.session.get(url, headers={"Accept": "application/json"}, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("VIES unreachable for %s%s: %r; using format check", country, number, e)
            return self._fallback(country, number)

        if resp.status_code >= 500:
            logger.warning("VIES returned %s for %s%s; using format check", resp.status_code, country, number)
            return self._fallback(country, number)

        if not resp.ok:
            logger.info("VIES rejected %s%s with status %s", country, number, resp.status_code)
            return VatDecision(
                country_code=country, vat_number=full, taxable=True, error="VAT validation failed"
            )

        try:
            data = resp.json()
        except ValueError:
            logger.warning("VIES returned a non-JSON body for %s%s; using format check", country, number)
            return self._fallback(country, number)

        if data.get("isValid"):
            return VatDecision(
                country_code=country,
                vat_number=full,
                taxable=False,
                valid=True,
                validated_name=_clean_text(data.get("name")),
                address=_clean_text(data.get("address")),
            )
        return VatDecision(
            country_code=country,
            vat_number=full,
            taxable=True,
            error=data.get("userError") or "Invalid VAT number",
        )

    def _fallback(self, country: str, number: str) -> VatDecision:
        error = check_vat_format(country, number)
        if error is None:
            return VatDecision(
                country_code=country,
                vat_number=f"{country}{number}",
                taxable=False,
                valid=True,
                used_fallback=True,
            )
        return VatDecision(
            country_code=country,
            vat_number=f"{country}{number}",
            taxable=True,
            used_fallback=True,
            service_unavailable=True,
            error=error,
        )


def _clean_text(v) -> Optional[str]:
    # VIES devuelve "---" cuando el estado miembro no publica el dato
    if not v or str(v).strip() in ("---", ""):
        return None
    return str(v).strip()
