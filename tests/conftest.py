"""
Shared fixtures: a temporary vault database per test and a small test registry.

The test registry adds three sections on top of the built-ins:
core (name, tagline), footer (companyName) and page (headline, body),
with the sync rule core.name -> footer.companyName and page/footer declared
as dependents of core for find-and-replace of core.name.
"""

from typing import Any, Dict, Optional
from unittest.mock import patch

import pytest

from content_vault.api.service import VaultService
from content_vault.core import config, dao, db
from content_vault.core.background import BackgroundDispatcher
from content_vault.core.dependency_rules import DependencyRules
from content_vault.core.field_registry import FieldDefinition, SectionDefinition, SectionRegistry
from content_vault.core.section_models import SectionDocumentModel
from content_vault.core.sync_rules import SyncRule, SyncRuleTable


class CoreDocument(SectionDocumentModel):
    name: str
    tagline: Optional[str] = None


class FooterDocument(SectionDocumentModel):
    companyName: Optional[str] = None
    links: Optional[Dict[str, Any]] = None


class PageDocument(SectionDocumentModel):
    headline: Optional[str] = None
    body: Optional[str] = None
    a: Optional[Dict[str, Any]] = None


TEST_SECTIONS = (
    SectionDefinition("core", "Core Identity", (
        FieldDefinition("name", "Business Name", "text", 0),
        FieldDefinition("tagline", "Tagline", "text", 1, {"maxLength": 80}),
    ), CoreDocument),
    SectionDefinition("footer", "Footer", (
        FieldDefinition("companyName", "Company Name", "text", 0),
    ), FooterDocument),
    SectionDefinition("page", "Landing Page", (
        FieldDefinition("headline", "Headline", "text", 0),
        FieldDefinition("body", "Body", "textarea", 1),
    ), PageDocument),
)

TEST_SYNC_RULES = (
    SyncRule("core", "name", "footer", "companyName", description="Company name in the footer"),
)


@pytest.fixture(autouse=True)
def vault_db(tmp_path):
    """Point the vault at a fresh database file for each test."""
    with patch.object(config, "DB_PATH", str(tmp_path / "vault.db")):
        db.init_db()
        yield str(tmp_path / "vault.db")


@pytest.fixture
def registry():
    return SectionRegistry(extra=TEST_SECTIONS)


@pytest.fixture
def sync_table():
    return SyncRuleTable(TEST_SYNC_RULES)


@pytest.fixture
def rules():
    return DependencyRules(
        dependency_map={"core": ["page", "footer"]},
        atomic_fields={"core": ["name"]},
        field_dependencies={"core.name": {"affected_sections": ["page", "footer"], "reason": "Uses your business name"}},
    )


@pytest.fixture
def dispatcher():
    pool = BackgroundDispatcher(max_workers=2)
    yield pool
    pool.wait_idle(timeout=10)
    pool.shutdown()


@pytest.fixture
def service(registry, sync_table, rules, dispatcher):
    return VaultService(registry=registry, sync_table=sync_table, dependency_rules=rules, dispatcher=dispatcher)


@pytest.fixture
def project():
    """An active project id."""
    return dao.create_project("owner-1", "Test project", project_id="proj-1").id
