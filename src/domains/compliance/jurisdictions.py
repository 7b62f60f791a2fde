"""Jurisdiction and business-type risk reference tables.

Country tiers follow the FATF public statements:
  - prohibited:  High-Risk Jurisdictions subject to a Call for Action
  - very_high:   comprehensively sanctioned or conflict jurisdictions
  - high:        Jurisdictions under Increased Monitoring (grey list)
  - low:         FATF members with strong mutual evaluation results
Countries not listed default to medium. The lists must be refreshed whenever
FATF publishes a new statement (February, June, October plenaries).
"""

from enum import StrEnum


class JurisdictionRisk(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
    PROHIBITED = "prohibited"


class BusinessTypeRisk(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


# 0-100 contribution of each tier to the jurisdiction factor
JURISDICTION_SCORES: dict[JurisdictionRisk, int] = {
    JurisdictionRisk.LOW: 10,
    JurisdictionRisk.MEDIUM: 40,
    JurisdictionRisk.HIGH: 70,
    JurisdictionRisk.VERY_HIGH: 90,
    JurisdictionRisk.PROHIBITED: 100,
}

BUSINESS_TYPE_SCORES: dict[BusinessTypeRisk, int] = {
    BusinessTypeRisk.LOW: 20,
    BusinessTypeRisk.MEDIUM: 50,
    BusinessTypeRisk.HIGH: 75,
    BusinessTypeRisk.VERY_HIGH: 90,
}

PROHIBITED_COUNTRIES: frozenset[str] = frozenset({
    "KP",  # North Korea
    "IR",  # Iran
    "MM",  # Myanmar
})

VERY_HIGH_RISK_COUNTRIES: frozenset[str] = frozenset({
    "AF",  # Afghanistan
    "CU",  # Cuba
    "LY",  # Libya
    "SO",  # Somalia
    "SS",  # South Sudan
    "SY",  # Syria
    "VE",  # Venezuela
    "YE",  # Yemen
})

HIGH_RISK_COUNTRIES: frozenset[str] = frozenset({
    "BF",  # Burkina Faso
    "BG",  # Bulgaria
    "CD",  # Democratic Republic of the Congo
    "CM",  # Cameroon
    "DZ",  # Algeria
    "HT",  # Haiti
    "KE",  # Kenya
    "LA",  # Laos
    "LB",  # Lebanon
    "MC",  # Monaco
    "ML",  # Mali
    "MZ",  # Mozambique
    "NA",  # Namibia
    "NG",  # Nigeria
    "NP",  # Nepal
    "PH",  # Philippines
    "SN",  # Senegal
    "TZ",  # Tanzania
    "VN",  # Vietnam
    "ZA",  # South Africa
})

LOW_RISK_COUNTRIES: frozenset[str] = frozenset({
    "AT", "AU", "BE", "CA", "CH", "DE", "DK", "ES", "FI", "FR",
    "GB", "IE", "IS", "IT", "JP", "LU", "NL", "NO", "NZ", "PT",
    "SE", "SG", "US",
})


def jurisdiction_risk(country_code: str | None) -> JurisdictionRisk:
    """Classify an ISO 3166-1 alpha-2 country code."""
    code = (country_code or "").strip().upper()
    if code in PROHIBITED_COUNTRIES:
        return JurisdictionRisk.PROHIBITED
    if code in VERY_HIGH_RISK_COUNTRIES:
        return JurisdictionRisk.VERY_HIGH
    if code in HIGH_RISK_COUNTRIES:
        return JurisdictionRisk.HIGH
    if code in LOW_RISK_COUNTRIES:
        return JurisdictionRisk.LOW
    return JurisdictionRisk.MEDIUM


def jurisdiction_score(country_code: str | None) -> int:
    return JURISDICTION_SCORES[jurisdiction_risk(country_code)]


def is_elevated_jurisdiction(risk: JurisdictionRisk) -> bool:
    return risk in (
        JurisdictionRisk.HIGH,
        JurisdictionRisk.VERY_HIGH,
        JurisdictionRisk.PROHIBITED,
    )


# ---------------------------------------------------------------------------
# Business type classification
# ---------------------------------------------------------------------------

# NAICS prefixes, longest match wins. Sources: FinCEN MSB guidance, FATF
# guidance for the real estate, casino and dealers-in-precious-metals sectors.
NAICS_PREFIX_RISK: dict[str, BusinessTypeRisk] = {
    "7132": BusinessTypeRisk.VERY_HIGH,  # gambling industries
    "713210": BusinessTypeRisk.VERY_HIGH,  # casinos
    "522390": BusinessTypeRisk.VERY_HIGH,  # money transmitters, check cashing
    "523130": BusinessTypeRisk.VERY_HIGH,  # commodity contracts dealing
    "423940": BusinessTypeRisk.HIGH,  # jewelry and precious metal wholesalers
    "448310": BusinessTypeRisk.HIGH,  # jewelry stores
    "4411": BusinessTypeRisk.HIGH,  # automobile dealers
    "5312": BusinessTypeRisk.HIGH,  # real estate agents and brokers
    "523": BusinessTypeRisk.HIGH,  # securities and investment activities
    "522": BusinessTypeRisk.HIGH,  # credit intermediation
    "531": BusinessTypeRisk.MEDIUM,  # real estate
    "722": BusinessTypeRisk.MEDIUM,  # restaurants and bars
    "447": BusinessTypeRisk.MEDIUM,  # gasoline stations
    "8131": BusinessTypeRisk.MEDIUM,  # religious organizations
    "8133": BusinessTypeRisk.MEDIUM,  # social advocacy / charities
    "61": BusinessTypeRisk.LOW,  # educational services
    "62": BusinessTypeRisk.LOW,  # health care
    "92": BusinessTypeRisk.LOW,  # public administration
    "31": BusinessTypeRisk.LOW,  # manufacturing
    "32": BusinessTypeRisk.LOW,
    "33": BusinessTypeRisk.LOW,
    "22": BusinessTypeRisk.LOW,  # utilities
}

INDUSTRY_CODE_RISK: dict[str, BusinessTypeRisk] = {
    "casino": BusinessTypeRisk.VERY_HIGH,
    "gambling": BusinessTypeRisk.VERY_HIGH,
    "money_services": BusinessTypeRisk.VERY_HIGH,
    "cryptocurrency": BusinessTypeRisk.VERY_HIGH,
    "virtual_assets": BusinessTypeRisk.VERY_HIGH,
    "arms_dealer": BusinessTypeRisk.VERY_HIGH,
    "shell_company": BusinessTypeRisk.VERY_HIGH,
    "precious_metals": BusinessTypeRisk.HIGH,
    "jewelry": BusinessTypeRisk.HIGH,
    "real_estate": BusinessTypeRisk.HIGH,
    "art_dealer": BusinessTypeRisk.HIGH,
    "car_dealer": BusinessTypeRisk.HIGH,
    "private_banking": BusinessTypeRisk.HIGH,
    "investment": BusinessTypeRisk.HIGH,
    "trust_services": BusinessTypeRisk.HIGH,
    "nonprofit": BusinessTypeRisk.MEDIUM,
    "charity": BusinessTypeRisk.MEDIUM,
    "restaurant": BusinessTypeRisk.MEDIUM,
    "retail": BusinessTypeRisk.MEDIUM,
    "import_export": BusinessTypeRisk.MEDIUM,
    "construction": BusinessTypeRisk.MEDIUM,
    "healthcare": BusinessTypeRisk.LOW,
    "education": BusinessTypeRisk.LOW,
    "government": BusinessTypeRisk.LOW,
    "manufacturing": BusinessTypeRisk.LOW,
    "utilities": BusinessTypeRisk.LOW,
    "technology": BusinessTypeRisk.LOW,
}


def business_type_from_naics(code: str) -> BusinessTypeRisk:
    digits = code.strip()
    for length in range(len(digits), 1, -1):
        risk = NAICS_PREFIX_RISK.get(digits[:length])
        if risk is not None:
            return risk
    return BusinessTypeRisk.MEDIUM


def business_type_from_industry(code: str) -> BusinessTypeRisk:
    key = code.strip().lower().replace("-", "_").replace(" ", "_")
    return INDUSTRY_CODE_RISK.get(key, BusinessTypeRisk.MEDIUM)


def business_type_risk(industry_code: str) -> BusinessTypeRisk:
    """Numeric codes are read as NAICS, anything else as a textual industry."""
    if industry_code.strip().isdigit():
        return business_type_from_naics(industry_code)
    return business_type_from_industry(industry_code)
