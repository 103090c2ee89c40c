"""
Shared fixtures for the test suite.

Key design decisions:
  - Engine tests get a fresh `MatchController` with a short overs limit so
    innings transitions are reachable in a handful of deliveries.
  - The API module holds one controller per process; it is replaced before
    each test so tests never see each other's match.
  - Provides an `httpx.AsyncClient` wired to the FastAPI app via ASGITransport.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import scorebook.main as main_mod
from scorebook.engine.match_controller import MatchController
from scorebook.models import MatchSetup


OPENERS = {"striker": "A", "non_striker": "B", "bowler": "X"}
CHASERS = {"striker": "P", "non_striker": "Q", "bowler": "M"}


# --------------------------------------------------------------------------- #
#  Engine fixtures
# --------------------------------------------------------------------------- #


@pytest.fixture
def setup() -> MatchSetup:
    return MatchSetup(team1="Lions", team2="Tigers", overs_limit=2)


@pytest.fixture
def controller(setup: MatchSetup) -> MatchController:
    """A match in its first innings: A on strike, B at the other end, X bowling."""
    ctrl = MatchController(setup=setup)
    ctrl.start_innings(OPENERS)
    return ctrl


# --------------------------------------------------------------------------- #
#  HTTP client: talks to the FastAPI app without a real server
# --------------------------------------------------------------------------- #


@pytest.fixture(autouse=True)
def _fresh_api_controller():
    main_mod.controller = MatchController()
    main_mod.subscribers.clear()
    yield
    main_mod.subscribers.clear()


@pytest_asyncio.fixture
async def client() -> AsyncClient:
    transport = ASGITransport(app=main_mod.app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
