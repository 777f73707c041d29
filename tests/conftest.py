import pytest

from incident_rca.models import KnowledgeIndex, Organization


@pytest.fixture
def organization() -> Organization:
    return Organization(id="org-1", name="Acme")


@pytest.fixture
def knowledge_index() -> KnowledgeIndex:
    return KnowledgeIndex(id="idx-1", organization="org-1", name="acme_kb", type="mongodb-atlas")
