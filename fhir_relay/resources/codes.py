"""
Code tables used when turning form values into FHIR codings.

Form values arrive as display text ("Spanish", "Asian", ...). Lookups are
case-insensitive; unknown values return None and callers fall back to the
free-text representation.
"""

from typing import Dict, Optional

LANGUAGE_SYSTEM = "urn:ietf:bcp:47"
RACE_ETHNICITY_SYSTEM = "urn:oid:2.16.840.1.113883.6.238"
ADMINISTRATIVE_GENDER_VALUES = ("male", "female", "other", "unknown")

US_CORE_RACE_URL = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-race"
US_CORE_ETHNICITY_URL = "http://hl7.org/fhir/us/core/StructureDefinition/us-core-ethnicity"

LANGUAGES: Dict[str, str] = {
    "arabic": "ar",
    "chinese": "zh",
    "english": "en",
    "french": "fr",
    "german": "de",
    "haitian creole": "ht",
    "hindi": "hi",
    "italian": "it",
    "japanese": "ja",
    "korean": "ko",
    "polish": "pl",
    "portuguese": "pt",
    "russian": "ru",
    "spanish": "es",
    "tagalog": "tl",
    "vietnamese": "vi",
}

# OMB minimum categories (CDC Race & Ethnicity code set)
RACES: Dict[str, str] = {
    "american indian or alaska native": "1002-5",
    "asian": "2028-9",
    "black or african american": "2054-5",
    "native hawaiian or other pacific islander": "2076-8",
    "white": "2106-3",
}

ETHNICITIES: Dict[str, str] = {
    "hispanic or latino": "2135-2",
    "not hispanic or latino": "2186-5",
}


def _lookup(table: Dict[str, str], value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return table.get(value.strip().lower())


def language_code(value: Optional[str]) -> Optional[str]:
    """BCP-47 code for a language name; codes pass through unchanged."""
    if value and value.strip().lower() in LANGUAGES.values():
        return value.strip().lower()
    return _lookup(LANGUAGES, value)


def race_code(value: Optional[str]) -> Optional[str]:
    return _lookup(RACES, value)


def ethnicity_code(value: Optional[str]) -> Optional[str]:
    return _lookup(ETHNICITIES, value)


def gender_code(value: Optional[str]) -> Optional[str]:
    """FHIR administrative gender; "M"/"F" style abbreviations are expanded."""
    if not value:
        return None
    normalized = value.strip().lower()
    abbreviations = {"m": "male", "f": "female", "o": "other", "u": "unknown"}
    normalized = abbreviations.get(normalized, normalized)
    if normalized in ADMINISTRATIVE_GENDER_VALUES:
        return normalized
    return "other"
