"""
Read-side Services for the Postcode Hierarchy

This module provides the hierarchy resolver, the postcode codec and the
decomposed postcode search. Every read returns a tagged result so callers
can tell "nothing registered" apart from "broken slug chain" and from
"malformed request" without inspecting payload shapes.

Usage:
    # With FastAPI
    @app.get("/{country}/")
    def get_county(country: str, session: Session = Depends(get_session)):
        return HierarchyResolver(session).get_county(country)

    # Standalone
    with db_provider.session_scope() as session:
        result = PostcodeSearchEngine(session).search("sw1a 1aa", "postcode")
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from database.models import (
    Country,
    County,
    District,
    Ward,
    Outcode,
    Incode,
    Postcode,
    OUTCODE_MAX,
    INCODE_LENGTH,
)
from database.repositories import HierarchyRepository, PostcodeRepository

logger = logging.getLogger(__name__)


# ============================================
# TAGGED RESULTS
# ============================================

class HierarchyLevel(str, Enum):
    """Level at which a lookup chain can break."""
    COUNTRY = "country"
    COUNTY = "county"
    DISTRICT = "district"
    WARD = "ward"
    OUTCODE = "outcode"
    POSTCODE = "postcode"


INVALID_QUERY_TYPE = "INVALID_QUERY_TYPE"


@dataclass(frozen=True)
class Found:
    """Successful lookup. An empty payload means legitimate absence."""
    payload: Any


@dataclass(frozen=True)
class NotFoundAt:
    """A slug chain or parent reference did not resolve at `level`."""
    level: HierarchyLevel

    @property
    def message(self) -> str:
        return f"{self.level.value.capitalize()} not found"


@dataclass(frozen=True)
class Invalid:
    """The request was well-formed but asked for something unsupported."""
    reason: str
    message: str = ""


LookupResult = Union[Found, NotFoundAt, Invalid]


# ============================================
# PAYLOAD BUILDERS
# ============================================

def code_pair(outcode: str, incode: str) -> Dict[str, str]:
    return {"outcode": outcode, "incode": incode}


def outcode_payload(outcode: Outcode) -> Dict[str, Any]:
    return {"id": outcode.id, "code": outcode.code}


def incode_payload(incode: Incode) -> Dict[str, Any]:
    return {"id": incode.id, "code": incode.code}


def country_payload(country: Country) -> Dict[str, Any]:
    return {
        "id": country.id,
        "name": country.name,
        "iso": country.iso,
        "slug": country.slug,
    }


def county_payload(county: County) -> Dict[str, Any]:
    return {
        "id": county.id,
        "code": county.code,
        "name": county.name,
        "slug": county.slug,
        "countryId": county.country_id,
    }


def district_payload(district: District) -> Dict[str, Any]:
    return {
        "id": district.id,
        "code": district.code,
        "name": district.name,
        "slug": district.slug,
        "countyId": district.county_id,
    }


def ward_payload(ward: Ward) -> Dict[str, Any]:
    return {
        "id": ward.id,
        "name": ward.name,
        "slug": ward.slug,
        "code": ward.code,
        "districtId": ward.district_id,
    }


def postcode_record(
    postcode: Postcode,
    outcode: Outcode,
    incode: Incode,
    ward: Ward,
    district: District,
    county: County,
    country: Country
) -> Dict[str, Any]:
    """Flatten a joined postcode row into its public record."""
    return {
        "id": postcode.id,
        "outcode": outcode.code,
        "incode": incode.code,
        "latitude": postcode.latitude,
        "longitude": postcode.longitude,
        "ward": ward_payload(ward),
        "district": district_payload(district),
        "county": county_payload(county),
        "country": country_payload(country),
    }


# ============================================
# HIERARCHY RESOLVER
# ============================================

class HierarchyResolver:
    """
    Walks the administrative tree by slug chain.

    Each level is resolved inside the scope of its parent, and the walk stops
    at the first slug that does not resolve. A resolved node is returned with
    the full list of its immediate children for breadcrumb navigation.
    """

    def __init__(self, session: Session):
        self.session = session
        self.hierarchy = HierarchyRepository(session)
        self.postcodes = PostcodeRepository(session)

    def _walk(self, *slugs: str) -> Tuple[List[Any], Optional[HierarchyLevel]]:
        """
        Resolve slugs level by level.

        Returns:
            Tuple of (resolved nodes, level that failed or None)
        """
        country = self.hierarchy.get_country_by_slug(slugs[0])
        if country is None:
            return [], HierarchyLevel.COUNTRY

        chain: List[Any] = [country]
        steps = [
            (self.hierarchy.get_county, HierarchyLevel.COUNTY),
            (self.hierarchy.get_district, HierarchyLevel.DISTRICT),
            (self.hierarchy.get_ward, HierarchyLevel.WARD),
        ]
        for slug, (lookup, level) in zip(slugs[1:], steps):
            node = lookup(slug, chain[-1].id)
            if node is None:
                return chain, level
            chain.append(node)
        return chain, None

    def get_county(self, country: str) -> LookupResult:
        """Country fields plus all of its counties."""
        chain, failed = self._walk(country)
        if failed is not None:
            return NotFoundAt(failed)

        record = chain[-1]
        payload = country_payload(record)
        payload["counties"] = [
            {"code": c.code, "name": c.name, "slug": c.slug}
            for c in self.hierarchy.list_counties(record.id)
        ]
        return Found(payload)

    def get_district(self, country: str, county: str) -> LookupResult:
        """County fields plus all of its districts."""
        chain, failed = self._walk(country, county)
        if failed is not None:
            return NotFoundAt(failed)

        record = chain[-1]
        payload = county_payload(record)
        payload["districts"] = [
            {"name": d.name, "code": d.code, "slug": d.slug}
            for d in self.hierarchy.list_districts(record.id)
        ]
        return Found(payload)

    def get_ward(self, country: str, county: str, district: str) -> LookupResult:
        """District fields plus all of its wards."""
        chain, failed = self._walk(country, county, district)
        if failed is not None:
            return NotFoundAt(failed)

        record = chain[-1]
        payload = district_payload(record)
        payload["wards"] = [
            {"name": w.name, "slug": w.slug, "code": w.code}
            for w in self.hierarchy.list_wards(record.id)
        ]
        return Found(payload)

    def get_postcodes(
        self,
        country: str,
        county: str,
        district: str,
        ward: str
    ) -> LookupResult:
        """
        Ward fields plus the code strings of every postcode in the ward.

        The chain is resolved with a single joined query. Only when that
        misses is the sequential walk run, to report the broken level.
        """
        record = self.hierarchy.resolve_ward_chain(country, county, district, ward)
        if record is None:
            _, failed = self._walk(country, county, district, ward)
            return NotFoundAt(failed or HierarchyLevel.WARD)

        payload = ward_payload(record)
        payload["postcodes"] = [
            code_pair(outcode, incode)
            for outcode, incode in self.postcodes.list_codes_for_ward(record.id)
        ]
        return Found(payload)


# ============================================
# POSTCODE CODEC
# ============================================

class PostcodeFormatError(ValueError):
    """Raised when a postcode string cannot be split into outcode and incode."""

    def __init__(self, message: str, value: str = ""):
        self.value = value
        super().__init__(message)


_SEPARATOR = re.compile(r"[\s-]+")
_OUTCODE_SHAPE = re.compile(rf"^[a-z0-9]{{1,{OUTCODE_MAX}}}$")
_INCODE_SHAPE = re.compile(rf"^[a-z0-9]{{{INCODE_LENGTH}}}$")


def split_postcode(text: str) -> Tuple[str, str]:
    """
    Split a full postcode into (outcode, incode), both lowercase.

    With a space or hyphen separator the halves are taken around it;
    otherwise the incode is the last three characters. Only the shape of
    each half is checked, not postcode grammar.

    Raises:
        PostcodeFormatError: If either half has the wrong length or charset
    """
    normalized = (text or "").strip().lower()
    parts = _SEPARATOR.split(normalized, maxsplit=1)
    if len(parts) == 2:
        outcode, incode = parts
    else:
        outcode, incode = normalized[:-INCODE_LENGTH], normalized[-INCODE_LENGTH:]

    if not _INCODE_SHAPE.match(incode):
        raise PostcodeFormatError(
            f"Incode must be {INCODE_LENGTH} letters or digits", value=text
        )
    if not _OUTCODE_SHAPE.match(outcode):
        raise PostcodeFormatError(
            f"Outcode must be 1 to {OUTCODE_MAX} letters or digits", value=text
        )
    return outcode, incode


class PostcodeCodec:
    """Resolves decomposed postcodes to their joined hierarchy record."""

    def __init__(self, session: Session):
        self.session = session
        self.postcodes = PostcodeRepository(session)

    def resolve_postcode(self, outcode: str, incode: str) -> Found:
        """
        Look up a postcode by its two halves.

        Both halves must exist in their code tables before the join runs.
        An unknown half or an unregistered pair gives an empty list.

        Returns:
            Found([]) or Found([record])
        """
        outcode_row = self.postcodes.get_outcode(outcode)
        if outcode_row is None:
            return Found([])

        incode_row = self.postcodes.get_incode(incode)
        if incode_row is None:
            return Found([])

        row = self.postcodes.get_postcode_details(outcode_row.id, incode_row.id)
        if row is None:
            return Found([])
        return Found([postcode_record(*row)])

    def resolve_full_postcode(self, text: str) -> Found:
        """Split a full postcode string, then resolve it."""
        outcode, incode = split_postcode(text)
        return self.resolve_postcode(outcode, incode)


class PostcodeCatalog:
    """Paginated listings over the outcode and incode tables."""

    def __init__(self, session: Session, query_cap: int = 80):
        self.session = session
        self.query_cap = query_cap
        self.postcodes = PostcodeRepository(session)

    def list_outcodes(self, skip: int = 0, limit: int = 20, query: str = "") -> Found:
        """
        List outcodes.

        A non-empty query switches to substring matching capped at
        `query_cap` rows, and skip/limit are ignored.
        """
        if query:
            rows = self.postcodes.search_outcodes(query, self.query_cap)
        else:
            rows = self.postcodes.list_outcodes(offset=skip, limit=limit)
        return Found([outcode_payload(row) for row in rows])

    def list_incodes(
        self,
        outcode: str,
        skip: int = 0,
        limit: int = 20,
        query: str = ""
    ) -> LookupResult:
        """
        List incodes used with an outcode.

        Query mode matches across all incodes, like list_outcodes, without
        looking at the outcode.
        """
        if query:
            rows = self.postcodes.search_incodes(query, self.query_cap)
            return Found([incode_payload(row) for row in rows])

        outcode_row = self.postcodes.get_outcode(outcode)
        if outcode_row is None:
            return NotFoundAt(HierarchyLevel.OUTCODE)

        rows = self.postcodes.list_incodes_for_outcode(
            outcode_row.id, offset=skip, limit=limit
        )
        return Found([incode_payload(row) for row in rows])

    def list_by_area_prefix(self, prefix: str, skip: int = 0, limit: int = 20) -> Found:
        """Outcodes starting with an area prefix, e.g. "sw" or "sw1"."""
        rows = self.postcodes.match_outcodes_by_prefix(prefix, offset=skip, limit=limit)
        return Found([outcode_payload(row) for row in rows])

    def list_related(self, postcode_id: int, skip: int = 0, limit: int = 20) -> LookupResult:
        """Other postcodes in the same ward as the given postcode."""
        postcode = self.postcodes.get_by_id(Postcode, postcode_id)
        if postcode is None:
            return NotFoundAt(HierarchyLevel.POSTCODE)

        pairs = self.postcodes.list_codes_for_ward(
            postcode.ward_id,
            exclude_postcode_id=postcode.id,
            offset=skip,
            limit=limit
        )
        return Found([code_pair(outcode, incode) for outcode, incode in pairs])


# ============================================
# SEARCH ENGINE
# ============================================

QUERY_TYPE_POSTCODE = "postcode"
RESERVED_QUERY_TYPES = frozenset({"ward", "district", "county"})


def tokenize_query(query: str) -> Tuple[str, str]:
    """
    Normalize a free-text query into at most two tokens.

    Lowercases, turns the first hyphen into a space and splits on
    whitespace. Missing tokens are empty strings; extra tokens are dropped.
    """
    tokens = (query or "").lower().replace("-", " ", 1).split()
    first = tokens[0] if tokens else ""
    second = tokens[1] if len(tokens) > 1 else ""
    return first, second


class PostcodeSearchEngine:
    """
    Decomposed postcode search.

    The first token is prefix-matched against the outcode table and the
    second against the incode table. Both scans run on small dense tables;
    only the final projection touches the postcodes table.
    """

    def __init__(self, session: Session):
        self.session = session
        self.postcodes = PostcodeRepository(session)

    def search(
        self,
        query: str,
        query_type: str = QUERY_TYPE_POSTCODE,
        skip: int = 0,
        limit: int = 20
    ) -> LookupResult:
        """
        Search postcodes.

        The query type is checked before the query itself, so an unsupported
        type is reported as Invalid even when the query is empty.

        Args:
            query: Free text such as "sw1a 1aa", "SW1A-1" or "sw1"
            query_type: "postcode"; "ward", "district" and "county" are
                reserved and always empty
            skip: Pagination offset
            limit: Maximum results

        Returns:
            Found([{"outcode", "incode"}, ...]) or Invalid(INVALID_QUERY_TYPE)
        """
        if query_type in RESERVED_QUERY_TYPES:
            return Found([])
        if query_type != QUERY_TYPE_POSTCODE:
            return Invalid(INVALID_QUERY_TYPE, f"Unsupported query type: {query_type}")

        outcode_token, incode_token = tokenize_query(query)
        if not outcode_token:
            return Found([])

        outcodes = self.postcodes.match_outcodes_by_prefix(outcode_token)
        if not outcodes:
            return Found([])

        incode_ids = None
        if incode_token:
            incodes = self.postcodes.match_incodes_by_prefix(incode_token)
            # An incode token with no matches does not narrow the result
            if incodes:
                incode_ids = [row.id for row in incodes]

        pairs = self.postcodes.find_postcode_codes(
            [row.id for row in outcodes],
            incode_ids,
            offset=skip,
            limit=limit
        )
        logger.debug(
            f"Search '{outcode_token} {incode_token}' matched "
            f"{len(outcodes)} outcodes, returned {len(pairs)} postcodes"
        )
        return Found([code_pair(outcode, incode) for outcode, incode in pairs])
