"""
Shared fixtures for the postcode hierarchy tests.

Every test gets its own in-memory SQLite database. StaticPool keeps a single
connection so the schema survives across sessions and threads (TestClient
runs sync routes in a worker thread).
"""

import sys
from pathlib import Path
from types import SimpleNamespace

sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from database.connection import DatabaseSettings, create_test_provider
from database.mutation_gateway import MutationGateway


@pytest.fixture
def engine():
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def provider(engine):
    """Initialized session provider with the schema created."""
    provider = create_test_provider(engine=engine, settings=DatabaseSettings(url="sqlite://"))
    provider.init()
    provider.create_tables()
    yield provider
    provider.drop_tables()
    provider.close()


@pytest.fixture
def seeded(provider):
    """
    Reference data:

    United Kingdom (GB)
      Greater London (LND)
        Westminster
          St James's   -> sw1a 1aa, sw1a 2aa, sw1p 3hq
          Abbey Road   -> nw8 1ab, sw2 1aa
        Camden
          Regent's Park (no postcodes)
      Kent (KNT)
        Maidstone
          High Street  -> me14 1ab
    France (FR), no counties

    Incode 9zz exists but is not linked to any outcode.
    """
    with provider.get_unit_of_work() as uow:
        gateway = MutationGateway(uow.session)

        uk = gateway.add_country("United Kingdom", "GB")
        france = gateway.add_country("France", "FR")

        london = gateway.add_county("Greater London", "LND", uk.id)
        kent = gateway.add_county("Kent", "KNT", uk.id)

        westminster = gateway.add_district("Westminster", "E09000033", london.id)
        camden = gateway.add_district("Camden", "E09000007", london.id)
        maidstone = gateway.add_district("Maidstone", "E07000110", kent.id)

        st_james = gateway.add_ward("St James's", "E05000644", westminster.id)
        abbey_road = gateway.add_ward("Abbey Road", "E05000630", westminster.id)
        regents_park = gateway.add_ward("Regent's Park", "E05000143", camden.id)
        high_street = gateway.add_ward("High Street", "E05005012", maidstone.id)

        outcodes = {code: gateway.add_outcode(code) for code in ("SW1A", "SW1P", "SW2", "NW8", "ME14")}
        incodes = {code: gateway.add_incode(code) for code in ("1AA", "2AA", "3HQ", "1AB", "9ZZ")}

        links = [
            ("SW1A", "1AA", st_james, 51.501009, -0.141588),
            ("SW1A", "2AA", st_james, 51.503396, -0.127640),
            ("SW1P", "3HQ", st_james, 51.497500, -0.135700),
            ("NW8", "1AB", abbey_road, 51.532000, -0.177000),
            ("SW2", "1AA", abbey_road, 51.450000, -0.120000),
            ("ME14", "1AB", high_street, 51.272000, 0.522000),
        ]
        postcodes = {}
        for outcode, incode, ward, lat, lon in links:
            postcode = gateway.add_postcode(
                outcodes[outcode].id, incodes[incode].id, lat, lon, ward.id
            )
            postcodes[f"{outcode} {incode}".lower()] = postcode.id

        uow.commit()

        return SimpleNamespace(
            uk_id=uk.id,
            france_id=france.id,
            london_id=london.id,
            kent_id=kent.id,
            westminster_id=westminster.id,
            maidstone_id=maidstone.id,
            st_james_id=st_james.id,
            abbey_road_id=abbey_road.id,
            regents_park_id=regents_park.id,
            outcode_ids={code.lower(): row.id for code, row in outcodes.items()},
            incode_ids={code.lower(): row.id for code, row in incodes.items()},
            postcode_ids=postcodes,
        )


@pytest.fixture
def session(provider, seeded):
    """Session over the seeded database, committed on exit."""
    with provider.session_scope() as session:
        yield session
