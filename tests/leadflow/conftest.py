"""Shared fixtures for leadflow tests.

Store-backed tests run against a throwaway SQLite database (aiosqlite)
created per test under pytest's tmp_path.
"""

import os
import sys
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure src/ is on sys.path so tests run without an editable install
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from leadflow.context import StageContext
from leadflow.integrations.extractor import ExtractedData
from leadflow.integrations.firecrawl import ScrapeResult
from leadflow.models import Base, BusinessProfile, Lead, create_test_engine
from leadflow.models.database import make_session_factory
from leadflow.store import LeadStore


@pytest.fixture
async def session_factory(tmp_path):
    """Session factory bound to a fresh SQLite file with all tables created."""
    engine = create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'leadflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory) -> LeadStore:
    return LeadStore(session_factory)


@pytest.fixture
def context() -> StageContext:
    return StageContext(user_id="user-1", task_id="task-1")


def make_lead(lead_id: str = "lead-1", **overrides: Any) -> Lead:
    """Build an unsaved lead with sensible defaults."""
    values: dict[str, Any] = {
        "id": lead_id,
        "user_id": "user-1",
        "company_name": "Padaria Central",
        "website": "https://padariacentral.com.br",
        "address": "Rua das Flores, 100 - Recife - PE",
        "emails": [],
        "phones": [],
        "social_media": {},
        "status": "novo",
    }
    values.update(overrides)
    return Lead(**values)


def make_profile(profile_id: str = "profile-1", **overrides: Any) -> BusinessProfile:
    values: dict[str, Any] = {
        "id": profile_id,
        "user_id": "user-1",
        "company_name": "Fornos Rápidos",
        "company_description": "Fornecemos fornos industriais para padarias",
        "problem_solved": "Reduzimos o consumo de energia na produção",
        "differentials": ["Entrega em 48h", "Assistência técnica própria"],
        "sender_name": "Ana Souza",
        "language": "pt-BR",
    }
    values.update(overrides)
    return BusinessProfile(**values)


async def add_all(session_factory, *rows: Any) -> None:
    """Persist rows in one transaction."""
    async with session_factory() as session:
        session.add_all(rows)
        await session.commit()


def make_scraper(markdown: str = "# Padaria Central\n\ncontato@padariacentral.com.br") -> MagicMock:
    """Scraper double whose scrape_url returns one page."""
    scraper = MagicMock()
    page = ScrapeResult(url="https://padariacentral.com.br", markdown=markdown)
    scraper.scrape_url = AsyncMock(return_value=page)
    scraper.scrape_url_safe = AsyncMock(return_value=page)
    return scraper


def make_extractor(data: Optional[ExtractedData] = None) -> MagicMock:
    extractor = MagicMock()
    extractor.extract = AsyncMock(
        return_value=data
        or ExtractedData(
            url="https://padariacentral.com.br",
            company="Padaria Central",
            contact="João Lima",
            contact_role="Proprietário",
            emails=["contato@padariacentral.com.br"],
            phones=["+55 81 99999-0000"],
        )
    )
    return extractor
