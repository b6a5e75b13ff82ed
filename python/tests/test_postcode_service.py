"""
Tests for the hierarchy resolver, the postcode codec and the search engine.
"""

import pytest

from database.mutation_gateway import MutationGateway
from database.postcode_service import (
    Found,
    NotFoundAt,
    Invalid,
    HierarchyLevel,
    HierarchyResolver,
    PostcodeCodec,
    PostcodeCatalog,
    PostcodeSearchEngine,
    PostcodeFormatError,
    INVALID_QUERY_TYPE,
    split_postcode,
    tokenize_query,
)


def codes(result):
    """Render a Found list of code pairs as 'outcode incode' strings."""
    assert isinstance(result, Found)
    return [f"{row['outcode']} {row['incode']}" for row in result.payload]


# ============================================
# HIERARCHY RESOLVER
# ============================================

class TestHierarchyResolver:
    """Tests for slug chain walking."""

    def test_fresh_country_with_one_county(self, provider):
        with provider.get_unit_of_work() as uow:
            gateway = MutationGateway(uow.session)
            uk = gateway.add_country("United Kingdom", "GB")
            gateway.add_county("Greater London", "LND", uk.id)
            uow.commit()

        with provider.session_scope() as session:
            result = HierarchyResolver(session).get_county("united-kingdom")

        assert isinstance(result, Found)
        assert result.payload["name"] == "United Kingdom"
        assert result.payload["iso"] == "GB"
        assert result.payload["counties"] == [
            {"code": "LND", "name": "Greater London", "slug": "greater-london"}
        ]

    def test_country_without_counties(self, session, seeded):
        result = HierarchyResolver(session).get_county("france")
        assert result == Found({
            "id": seeded.france_id,
            "name": "France",
            "iso": "FR",
            "slug": "france",
            "counties": [],
        })

    def test_unknown_country(self, session, seeded):
        assert HierarchyResolver(session).get_county("narnia") == NotFoundAt(HierarchyLevel.COUNTRY)

    def test_county_lists_districts(self, session, seeded):
        result = HierarchyResolver(session).get_district("united-kingdom", "greater-london")
        assert result.payload["countryId"] == seeded.uk_id
        assert result.payload["code"] == "LND"
        assert [d["slug"] for d in result.payload["districts"]] == ["westminster", "camden"]
        assert set(result.payload["districts"][0]) == {"name", "code", "slug"}

    def test_district_lists_wards(self, session, seeded):
        result = HierarchyResolver(session).get_ward("united-kingdom", "greater-london", "westminster")
        assert result.payload["slug"] == "westminster"
        assert result.payload["wards"] == [
            {"name": "St James's", "slug": "st-james-s", "code": "E05000644"},
            {"name": "Abbey Road", "slug": "abbey-road", "code": "E05000630"},
        ]

    def test_ward_lists_postcodes(self, session, seeded):
        result = HierarchyResolver(session).get_postcodes(
            "united-kingdom", "greater-london", "westminster", "st-james-s"
        )
        assert result.payload["id"] == seeded.st_james_id
        assert result.payload["districtId"] == seeded.westminster_id
        assert result.payload["postcodes"] == [
            {"outcode": "sw1a", "incode": "1aa"},
            {"outcode": "sw1a", "incode": "2aa"},
            {"outcode": "sw1p", "incode": "3hq"},
        ]

    def test_ward_without_postcodes(self, session, seeded):
        result = HierarchyResolver(session).get_postcodes(
            "united-kingdom", "greater-london", "camden", "regent-s-park"
        )
        assert isinstance(result, Found)
        assert result.payload["postcodes"] == []

    @pytest.mark.parametrize("chain, level", [
        (("narnia", "greater-london", "westminster", "st-james-s"), HierarchyLevel.COUNTRY),
        (("france", "greater-london", "westminster", "st-james-s"), HierarchyLevel.COUNTY),
        (("united-kingdom", "greater-london", "maidstone", "high-street"), HierarchyLevel.DISTRICT),
        (("united-kingdom", "greater-london", "westminster", "high-street"), HierarchyLevel.WARD),
    ])
    def test_walk_stops_at_first_broken_level(self, session, seeded, chain, level):
        assert HierarchyResolver(session).get_postcodes(*chain) == NotFoundAt(level)

    def test_partial_chains(self, session, seeded):
        resolver = HierarchyResolver(session)
        assert resolver.get_district("united-kingdom", "essex") == NotFoundAt(HierarchyLevel.COUNTY)
        assert resolver.get_ward("united-kingdom", "kent", "westminster") == NotFoundAt(HierarchyLevel.DISTRICT)

    def test_not_found_message(self):
        assert NotFoundAt(HierarchyLevel.DISTRICT).message == "District not found"


# ============================================
# POSTCODE CODEC
# ============================================

class TestSplitPostcode:
    """Tests for splitting full postcodes."""

    @pytest.mark.parametrize("text, expected", [
        ("SW1A 1AA", ("sw1a", "1aa")),
        ("sw1a1aa", ("sw1a", "1aa")),
        ("m11ae", ("m1", "1ae")),
        (" EC1A-1BB ", ("ec1a", "1bb")),
        ("W1A  0AX", ("w1a", "0ax")),
    ])
    def test_valid(self, text, expected):
        assert split_postcode(text) == expected

    @pytest.mark.parametrize("text", ["", "ab", "toolong1aa", "sw1a 1a", "sw1a 1a!", "1aa"])
    def test_invalid(self, text):
        with pytest.raises(PostcodeFormatError) as exc_info:
            split_postcode(text)
        assert exc_info.value.value == text

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            split_postcode("x")


class TestPostcodeCodec:
    """Tests for resolving decomposed postcodes."""

    def test_resolve_record(self, session, seeded):
        result = PostcodeCodec(session).resolve_postcode("sw1a", "1aa")
        assert isinstance(result, Found)
        (record,) = result.payload
        assert record["id"] == seeded.postcode_ids["sw1a 1aa"]
        assert (record["outcode"], record["incode"]) == ("sw1a", "1aa")
        assert record["latitude"] == pytest.approx(51.501009)
        assert record["longitude"] == pytest.approx(-0.141588)
        assert record["ward"]["slug"] == "st-james-s"
        assert record["district"]["slug"] == "westminster"
        assert record["county"]["slug"] == "greater-london"
        assert record["country"]["iso"] == "GB"

    def test_resolve_is_case_insensitive(self, session, seeded):
        result = PostcodeCodec(session).resolve_postcode("SW1A", "1AA")
        assert len(result.payload) == 1

    def test_every_seeded_postcode_resolves_to_itself(self, session, seeded):
        codec = PostcodeCodec(session)
        for text, postcode_id in seeded.postcode_ids.items():
            outcode, incode = text.split()
            (record,) = codec.resolve_postcode(outcode, incode).payload
            assert record["id"] == postcode_id
            assert f"{record['outcode']} {record['incode']}" == text

    @pytest.mark.parametrize("outcode, incode", [
        ("zz9", "1aa"),     # unknown outcode
        ("sw1a", "0zz"),    # unknown incode
        ("sw1a", "9zz"),    # both known, pair not registered
        ("me14", "1aa"),
    ])
    def test_unresolved_is_empty(self, session, seeded, outcode, incode):
        assert PostcodeCodec(session).resolve_postcode(outcode, incode) == Found([])

    def test_resolve_full_postcode(self, session, seeded):
        (record,) = PostcodeCodec(session).resolve_full_postcode("ME14-1AB").payload
        assert record["ward"]["name"] == "High Street"

    @pytest.mark.parametrize("text", ["ab", "sw1a 1a!"])
    def test_resolve_full_postcode_invalid(self, session, seeded, text):
        with pytest.raises(PostcodeFormatError):
            PostcodeCodec(session).resolve_full_postcode(text)

    def test_well_shaped_unknown_postcode_is_empty(self, session, seeded):
        # "nope" splits into "n" / "ope"; both halves have a valid shape
        assert PostcodeCodec(session).resolve_full_postcode("nope") == Found([])


# ============================================
# CATALOG
# ============================================

class TestPostcodeCatalog:
    """Tests for outcode/incode listings."""

    def test_list_outcodes(self, session, seeded):
        result = PostcodeCatalog(session).list_outcodes()
        assert [o["code"] for o in result.payload] == ["me14", "nw8", "sw1a", "sw1p", "sw2"]
        assert result.payload[0] == {"id": seeded.outcode_ids["me14"], "code": "me14"}

    def test_list_outcodes_paginated(self, session, seeded):
        result = PostcodeCatalog(session).list_outcodes(skip=3, limit=5)
        assert [o["code"] for o in result.payload] == ["sw1p", "sw2"]

    def test_list_outcodes_query_ignores_pagination(self, session, seeded):
        result = PostcodeCatalog(session).list_outcodes(skip=10, limit=1, query="1")
        assert [o["code"] for o in result.payload] == ["me14", "sw1a", "sw1p"]

    def test_query_cap(self, session, seeded):
        result = PostcodeCatalog(session, query_cap=1).list_outcodes(query="s")
        assert [o["code"] for o in result.payload] == ["sw1a"]

    def test_list_incodes(self, session, seeded):
        result = PostcodeCatalog(session).list_incodes("SW1A")
        assert [i["code"] for i in result.payload] == ["1aa", "2aa"]

    def test_list_incodes_unknown_outcode(self, session, seeded):
        result = PostcodeCatalog(session).list_incodes("zz9")
        assert result == NotFoundAt(HierarchyLevel.OUTCODE)

    def test_list_incodes_query_searches_all(self, session, seeded):
        result = PostcodeCatalog(session).list_incodes("zz9", query="zz")
        assert [i["code"] for i in result.payload] == ["9zz"]

    def test_area_prefix(self, session, seeded):
        result = PostcodeCatalog(session).list_by_area_prefix("sw")
        assert [o["code"] for o in result.payload] == ["sw1a", "sw1p", "sw2"]
        assert PostcodeCatalog(session).list_by_area_prefix("xx") == Found([])

    def test_related_excludes_self(self, session, seeded):
        result = PostcodeCatalog(session).list_related(seeded.postcode_ids["sw1a 1aa"])
        assert codes(result) == ["sw1a 2aa", "sw1p 3hq"]

    def test_related_paginated(self, session, seeded):
        result = PostcodeCatalog(session).list_related(seeded.postcode_ids["sw1a 1aa"], skip=1, limit=1)
        assert codes(result) == ["sw1p 3hq"]

    def test_related_alone_in_ward(self, session, seeded):
        assert PostcodeCatalog(session).list_related(seeded.postcode_ids["me14 1ab"]) == Found([])

    def test_related_unknown_postcode(self, session, seeded):
        assert PostcodeCatalog(session).list_related(9999) == NotFoundAt(HierarchyLevel.POSTCODE)


# ============================================
# SEARCH ENGINE
# ============================================

class TestTokenizeQuery:
    """Tests for query normalization."""

    @pytest.mark.parametrize("query, expected", [
        ("SW1A 1AA", ("sw1a", "1aa")),
        ("sw1a-1aa", ("sw1a", "1aa")),
        ("  sw1a   1aa  extra", ("sw1a", "1aa")),
        ("sw1", ("sw1", "")),
        ("", ("", "")),
        ("   ", ("", "")),
    ])
    def test_tokens(self, query, expected):
        assert tokenize_query(query) == expected


class TestPostcodeSearch:
    """Tests for decomposed postcode search."""

    def test_outcode_prefix_widens(self, session, seeded):
        engine = PostcodeSearchEngine(session)
        narrow = codes(engine.search("sw1a"))
        wide = codes(engine.search("sw1"))
        assert narrow == ["sw1a 1aa", "sw1a 2aa"]
        assert wide == ["sw1a 1aa", "sw1a 2aa", "sw1p 3hq"]
        assert set(narrow) <= set(wide)

    @pytest.mark.parametrize("query", ["sw1a 1aa", "SW1A 1AA", "SW1A-1AA", "sw1a 1"])
    def test_full_or_partial_postcode(self, session, seeded, query):
        assert codes(PostcodeSearchEngine(session).search(query)) == ["sw1a 1aa"]

    def test_incode_without_matches_does_not_narrow(self, session, seeded):
        result = PostcodeSearchEngine(session).search("sw1a zzz")
        assert codes(result) == ["sw1a 1aa", "sw1a 2aa"]

    def test_known_incode_not_paired(self, session, seeded):
        assert PostcodeSearchEngine(session).search("sw1a 9zz") == Found([])

    @pytest.mark.parametrize("query", ["xx", "", "   ", "%", "_"])
    def test_no_outcode_match(self, session, seeded, query):
        assert PostcodeSearchEngine(session).search(query) == Found([])

    @pytest.mark.parametrize("query_type", ["ward", "district", "county"])
    def test_reserved_query_types_are_empty(self, session, seeded, query_type):
        assert PostcodeSearchEngine(session).search("sw1a", query_type) == Found([])

    def test_unknown_query_type(self, session, seeded):
        result = PostcodeSearchEngine(session).search("sw1a", "bogus")
        assert isinstance(result, Invalid)
        assert result.reason == INVALID_QUERY_TYPE

    def test_query_type_checked_before_empty_query(self, session, seeded):
        assert isinstance(PostcodeSearchEngine(session).search("", "bogus"), Invalid)

    def test_results_ordered_by_outcode_then_incode(self, session, seeded):
        result = codes(PostcodeSearchEngine(session).search("s"))
        assert result == ["sw1a 1aa", "sw1a 2aa", "sw1p 3hq", "sw2 1aa"]

    def test_pagination(self, session, seeded):
        engine = PostcodeSearchEngine(session)
        assert codes(engine.search("s", skip=1, limit=2)) == ["sw1a 2aa", "sw1p 3hq"]
        assert codes(engine.search("s", skip=10)) == []
