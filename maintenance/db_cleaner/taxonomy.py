"""
Canonical vocabularies for countries, funding stages and industries.

Each lookup returns the canonical value, or None when the input is not
recognized. Canonical values map to themselves, so applying a lookup to
its own output never changes it.
"""

import re
from typing import Optional

from maintenance.db_cleaner.similarity import strip_accents

_SEPARATORS = re.compile(r"[\s_\-/]+")
_DOTS = re.compile(r"\.")


def lookup_key(value: Optional[str]) -> str:
    """'  Série-A ' -> 'serie a', 'U.S.A.' -> 'usa', 'PRE_SEED' -> 'pre seed'."""
    if not value:
        return ""
    text = _DOTS.sub("", strip_accents(value).lower())
    return _SEPARATORS.sub(" ", text).strip()


# =============================================================================
# Countries
# =============================================================================

COUNTRY_ALIASES = {
    # United States
    "usa": "United States",
    "us": "United States",
    "united states of america": "United States",
    "america": "United States",
    "etats unis": "United States",
    # United Kingdom
    "uk": "United Kingdom",
    "great britain": "United Kingdom",
    "britain": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "royaume uni": "United Kingdom",
    # Europe
    "fr": "France",
    "deutschland": "Germany",
    "allemagne": "Germany",
    "de": "Germany",
    "espagne": "Spain",
    "espana": "Spain",
    "italie": "Italy",
    "italia": "Italy",
    "pays bas": "Netherlands",
    "holland": "Netherlands",
    "the netherlands": "Netherlands",
    "nl": "Netherlands",
    "belgique": "Belgium",
    "belgie": "Belgium",
    "suisse": "Switzerland",
    "schweiz": "Switzerland",
    "ch": "Switzerland",
    "suede": "Sweden",
    "sverige": "Sweden",
    "norvege": "Norway",
    "danemark": "Denmark",
    "finlande": "Finland",
    "irlande": "Ireland",
    "portugal": "Portugal",
    "autriche": "Austria",
    "osterreich": "Austria",
    "pologne": "Poland",
    "luxemburg": "Luxembourg",
    "estonie": "Estonia",
    # Rest of world
    "israel": "Israel",
    "chine": "China",
    "prc": "China",
    "inde": "India",
    "bresil": "Brazil",
    "brasil": "Brazil",
    "australie": "Australia",
    "japon": "Japan",
    "coree du sud": "South Korea",
    "korea": "South Korea",
    "republic of korea": "South Korea",
    "singapour": "Singapore",
    "uae": "United Arab Emirates",
    "emirats arabes unis": "United Arab Emirates",
    "mexique": "Mexico",
    "maroc": "Morocco",
}

COUNTRIES = (
    "United States", "United Kingdom", "France", "Germany", "Spain", "Italy",
    "Netherlands", "Belgium", "Switzerland", "Sweden", "Norway", "Denmark",
    "Finland", "Ireland", "Portugal", "Austria", "Poland", "Luxembourg",
    "Estonia", "Israel", "China", "India", "Brazil", "Canada", "Australia",
    "Japan", "South Korea", "Singapore", "United Arab Emirates", "Mexico",
    "Morocco",
)

_COUNTRY_LOOKUP = {lookup_key(name): name for name in COUNTRIES}
_COUNTRY_LOOKUP.update({lookup_key(alias): name for alias, name in COUNTRY_ALIASES.items()})

# Scanned inside free text ("Paris, France"); short codes are too ambiguous
_COUNTRY_SCAN = [
    (re.compile(rf"\b{re.escape(key)}\b"), name)
    for key, name in sorted(_COUNTRY_LOOKUP.items(), key=lambda item: -len(item[0]))
    if len(key) >= 4
]


def normalize_country(value: Optional[str]) -> Optional[str]:
    """
    Map a free-text country or location to a canonical country name.

    Tries the whole value, then its last comma-separated part ("Austin, TX, US"),
    then scans for a country name inside the text.
    """
    key = lookup_key(value)
    if not key:
        return None

    if key in _COUNTRY_LOOKUP:
        return _COUNTRY_LOOKUP[key]

    tail = lookup_key(value.rsplit(",", 1)[-1])
    if tail in _COUNTRY_LOOKUP:
        return _COUNTRY_LOOKUP[tail]

    for pattern, name in _COUNTRY_SCAN:
        if pattern.search(key):
            return name

    return None


# =============================================================================
# Funding stages
# =============================================================================

STAGES = (
    "PRE_SEED", "SEED", "SERIES_A", "SERIES_B", "SERIES_C", "SERIES_D",
    "SERIES_E", "SERIES_F", "LATE_STAGE", "GROWTH", "PRE_IPO", "IPO",
    "BRIDGE", "CONVERTIBLE", "DEBT", "GRANT",
)

STAGE_ALIASES = {
    "preseed": "PRE_SEED",
    "angel": "PRE_SEED",
    "business angel": "PRE_SEED",
    "pre amorcage": "PRE_SEED",
    "amorcage": "SEED",
    "seed round": "SEED",
    "serie a": "SERIES_A",
    "series a round": "SERIES_A",
    "a": "SERIES_A",
    "serie b": "SERIES_B",
    "b": "SERIES_B",
    "serie c": "SERIES_C",
    "c": "SERIES_C",
    "serie d": "SERIES_D",
    "d": "SERIES_D",
    "serie e": "SERIES_E",
    "serie f": "SERIES_F",
    "late": "LATE_STAGE",
    "growth equity": "GROWTH",
    "croissance": "GROWTH",
    "initial public offering": "IPO",
    "introduction en bourse": "IPO",
    "bridge round": "BRIDGE",
    "convertible note": "CONVERTIBLE",
    "obligations convertibles": "CONVERTIBLE",
    "venture debt": "DEBT",
    "dette": "DEBT",
    "subvention": "GRANT",
}

_STAGE_LOOKUP = {lookup_key(stage): stage for stage in STAGES}
_STAGE_LOOKUP.update({lookup_key(alias): stage for alias, stage in STAGE_ALIASES.items()})


def normalize_stage(value: Optional[str]) -> Optional[str]:
    """'Série A' -> 'SERIES_A', 'pre-seed' -> 'PRE_SEED', 'SERIES_A' -> 'SERIES_A'."""
    key = lookup_key(value)
    if not key:
        return None
    return _STAGE_LOOKUP.get(key)


# =============================================================================
# Industries
# =============================================================================

INDUSTRY_TAXONOMY = (
    # Software & Tech
    "SaaS B2B", "SaaS B2C", "Developer Tools", "Cloud Infrastructure",
    "Data & Analytics", "AI Pure-Play", "Cybersecurity", "Enterprise Software",
    # FinTech
    "FinTech Payments", "FinTech Banking", "FinTech Lending",
    "FinTech Insurance", "FinTech WealthTech",
    # Health
    "HealthTech", "MedTech", "BioTech", "Pharma", "Mental Health",
    # Commerce
    "E-commerce", "Marketplace B2C", "Marketplace B2B", "Retail Tech", "D2C Brands",
    # Marketing & Sales
    "MarTech", "AdTech", "Sales Tech",
    # HR & Work
    "HRTech", "Recruiting", "Future of Work", "Corporate Learning",
    # Real Estate & Construction
    "PropTech", "ConstructionTech", "Smart Building",
    # Transport & Logistics
    "Logistics", "Delivery", "Mobility", "Automotive",
    # Sustainability
    "CleanTech", "Energy", "GreenTech", "AgriTech", "FoodTech",
    # Other
    "EdTech", "LegalTech", "GovTech", "SpaceTech", "Defense", "Gaming",
    "Entertainment", "Social", "Consumer Apps", "Hardware", "DeepTech",
    "Robotics", "TravelTech",
)

INDUSTRY_ALIASES = {
    "saas": "SaaS B2B",
    "b2b saas": "SaaS B2B",
    "software as a service": "SaaS B2B",
    "software": "Enterprise Software",
    "enterprise": "Enterprise Software",
    "erp": "Enterprise Software",
    "informatique": "Enterprise Software",
    "devops": "Developer Tools",
    "devtools": "Developer Tools",
    "cloud": "Cloud Infrastructure",
    "infrastructure": "Cloud Infrastructure",
    "data": "Data & Analytics",
    "analytics": "Data & Analytics",
    "big data": "Data & Analytics",
    "ai": "AI Pure-Play",
    "artificial intelligence": "AI Pure-Play",
    "intelligence artificielle": "AI Pure-Play",
    "machine learning": "AI Pure-Play",
    "ml": "AI Pure-Play",
    "cyber": "Cybersecurity",
    "security": "Cybersecurity",
    "cybersecurite": "Cybersecurity",
    "fintech": "FinTech Payments",
    "payments": "FinTech Payments",
    "finance": "FinTech Payments",
    "financial services": "FinTech Payments",
    "neobank": "FinTech Banking",
    "banking": "FinTech Banking",
    "lending": "FinTech Lending",
    "crowdfunding": "FinTech Lending",
    "insurtech": "FinTech Insurance",
    "assurtech": "FinTech Insurance",
    "insurance": "FinTech Insurance",
    "wealthtech": "FinTech WealthTech",
    "health": "HealthTech",
    "healthcare": "HealthTech",
    "sante": "HealthTech",
    "medical": "MedTech",
    "biotechnology": "BioTech",
    "pharmaceutical": "Pharma",
    "ecommerce": "E-commerce",
    "e commerce": "E-commerce",
    "retail": "Retail Tech",
    "retailtech": "Retail Tech",
    "marketplace": "Marketplace B2B",
    "d2c": "D2C Brands",
    "dtc": "D2C Brands",
    "marketing": "MarTech",
    "crm": "MarTech",
    "advertising": "AdTech",
    "sales": "Sales Tech",
    "hr": "HRTech",
    "rh": "HRTech",
    "human resources": "HRTech",
    "recruitment": "Recruiting",
    "recrutement": "Recruiting",
    "education": "EdTech",
    "real estate": "PropTech",
    "immobilier": "PropTech",
    "property": "PropTech",
    "construction": "ConstructionTech",
    "transport": "Mobility",
    "transportation": "Mobility",
    "automobile": "Automotive",
    "food delivery": "Delivery",
    "clean": "CleanTech",
    "green": "GreenTech",
    "sustainability": "GreenTech",
    "climate": "GreenTech",
    "energie": "Energy",
    "food": "FoodTech",
    "agriculture": "AgriTech",
    "agtech": "AgriTech",
    "legal": "LegalTech",
    "games": "Gaming",
    "esport": "Gaming",
    "media": "Entertainment",
    "music": "Entertainment",
    "streaming": "Entertainment",
    "social media": "Social",
    "social network": "Social",
    "mobile apps": "Consumer Apps",
    "aerospace": "SpaceTech",
    "space": "SpaceTech",
    "defence": "Defense",
    "defensetech": "Defense",
    "travel": "TravelTech",
    "tourism": "TravelTech",
    "hospitality": "TravelTech",
    "deep tech": "DeepTech",
    "robots": "Robotics",
}

_INDUSTRY_LOOKUP = {lookup_key(name): name for name in INDUSTRY_TAXONOMY}
_ALIAS_LOOKUP = {lookup_key(alias): name for alias, name in INDUSTRY_ALIASES.items()}

# Partial matches against the taxonomy skip very short keys ("ai" is inside "retail")
_INDUSTRY_PARTIAL = [
    (re.compile(rf"\b{re.escape(key)}\b"), name)
    for key, name in sorted(_INDUSTRY_LOOKUP.items(), key=lambda item: -len(item[0]))
    if len(key) >= 3
]
_ALIAS_SCAN = [
    (re.compile(rf"\b{re.escape(key)}\b"), name)
    for key, name in sorted(_ALIAS_LOOKUP.items(), key=lambda item: -len(item[0]))
]


def normalize_industry(value: Optional[str]) -> Optional[str]:
    """
    Map a free-text industry label onto INDUSTRY_TAXONOMY.

    Order: exact taxonomy name, exact alias, taxonomy name inside the text,
    alias inside the text. Longer names win over shorter ones.
    """
    key = lookup_key(value)
    if not key:
        return None

    if key in _INDUSTRY_LOOKUP:
        return _INDUSTRY_LOOKUP[key]
    if key in _ALIAS_LOOKUP:
        return _ALIAS_LOOKUP[key]

    for pattern, name in _INDUSTRY_PARTIAL:
        if pattern.search(key):
            return name
    for pattern, name in _ALIAS_SCAN:
        if pattern.search(key):
            return name

    return None
