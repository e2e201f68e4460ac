"""Regional listing filter.

Each region is a static keyword table. A listing matches a region when its
free-text location contains one of the region's keywords (case-insensitive
substring, not tokenized: "london" matches "Greater London Area").

Precedence, in order:
1. ``ALL`` and unknown region codes match everything.
2. A blank location never matches.
3. ``GB`` also matches any GBP-priced listing.
4. ``US``/``CA``/``AU`` also match when the lower-cased code appears anywhere
   in the location. This is a loose match and produces false positives
   ("Chicago" contains "ca").
"""

from dataclasses import dataclass

ALL_REGIONS_CODE = "ALL"
DEFAULT_REGION_CODE = "GB"

# Regions whose bare two-letter code is accepted as a location substring
_COUNTRY_CODE_MATCH = frozenset({"US", "CA", "AU"})


@dataclass(frozen=True)
class Region:
    """A selectable region profile."""

    code: str
    display_name: str
    flag: str
    keywords: tuple[str, ...]


REGIONS: tuple[Region, ...] = (
    Region(code="ALL", display_name="All Locations", flag="🌍", keywords=()),
    Region(
        code="GB",
        display_name="United Kingdom",
        flag="🇬🇧",
        keywords=(
            "uk",
            "united kingdom",
            "england",
            "scotland",
            "wales",
            "northern ireland",
            "britain",
            "great britain",
            "london",
            "manchester",
            "birmingham",
            "glasgow",
            "liverpool",
            "leeds",
            "bristol",
            "edinburgh",
            "cardiff",
            "belfast",
        ),
    ),
    Region(
        code="US",
        display_name="United States",
        flag="🇺🇸",
        keywords=(
            "us",
            "usa",
            "united states",
            "america",
            "new york",
            "california",
            "texas",
            "florida",
        ),
    ),
    Region(
        code="EU",
        display_name="European Union",
        flag="🇪🇺",
        keywords=(
            "eu",
            "europe",
            "germany",
            "france",
            "spain",
            "italy",
            "netherlands",
            "belgium",
            "austria",
            "portugal",
            "greece",
            "ireland",
            "denmark",
            "sweden",
            "finland",
            "berlin",
            "paris",
            "madrid",
            "rome",
            "amsterdam",
            "brussels",
        ),
    ),
    Region(
        code="CA",
        display_name="Canada",
        flag="🇨🇦",
        keywords=("canada", "canadian", "toronto", "vancouver", "montreal"),
    ),
    Region(
        code="AU",
        display_name="Australia",
        flag="🇦🇺",
        keywords=("australia", "australian", "sydney", "melbourne", "brisbane", "perth"),
    ),
)

_REGIONS_BY_CODE: dict[str, Region] = {region.code: region for region in REGIONS}


def get_region(code: str) -> Region | None:
    """Look up a region profile by code (exact, upper-case)."""
    return _REGIONS_BY_CODE.get(code)


def matches_region(location: str | None, currency: str | None, region_code: str) -> bool:
    """Check whether a listing's location/currency fall inside a region.

    Args:
        location: Listing free-text location
        currency: Listing price currency code
        region_code: Selected region code (``ALL``, ``GB``, ``US``, ...)

    Returns:
        True if the listing should be shown for the region
    """
    if region_code == ALL_REGIONS_CODE:
        return True

    region = get_region(region_code)
    if region is None:
        # Unrecognized filter shows everything rather than hiding all data
        return True

    if not location or not location.strip():
        return False

    normalized = location.lower().strip()
    if any(keyword in normalized for keyword in region.keywords):
        return True

    if region.code == "GB" and currency == "GBP":
        return True

    if region.code in _COUNTRY_CODE_MATCH and region.code.lower() in normalized:
        return True

    return False
