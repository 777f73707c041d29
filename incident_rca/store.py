"""
Incident RCA - Persistence Module
==================================

Read access to organizations, knowledge-base indexes and integrations, plus
credential population for integrations.

The pipeline only depends on the ``Repository`` and ``SecretManager``
protocols; ``MongoRepository`` and ``MongoSecretManager`` are the MongoDB
implementations. Calls are synchronous (pymongo); async callers run them in
a worker thread.
"""

import logging
from typing import Any, Optional, Protocol

from bson import ObjectId
from pymongo import MongoClient

from incident_rca.config import (
    DB_NAME,
    INDEXES_COLLECTION,
    INTEGRATIONS_COLLECTION,
    ORGANIZATIONS_COLLECTION,
    SECRETS_COLLECTION,
    VENDORS_COLLECTION,
)
from incident_rca.models import Integration, KnowledgeIndex, Organization, Vendor
from incident_rca.utils import get_mongo_client

LOGGER = logging.getLogger(__name__)


class Repository(Protocol):
    def get_organization(self, organization_id: str) -> Optional[Organization]:
        ...

    def get_index(self, organization_id: str) -> Optional[KnowledgeIndex]:
        ...

    def get_integrations(self, organization_id: str) -> list[Integration]:
        ...

    def get_integration_by_vendor(
        self, vendor_name: str, organization_id: str
    ) -> Optional[Integration]:
        ...


class SecretManager(Protocol):
    def populate_credentials(self, integrations: list[Integration]) -> list[Integration]:
        """Return copies of ``integrations`` with decrypted credentials."""


def _id_filter(value: str) -> Any:
    # References may be stored as ObjectId or as plain strings
    if ObjectId.is_valid(value):
        return {"$in": [ObjectId(value), value]}
    return value


def _to_integration(doc: dict) -> Integration:
    vendor = doc.get("vendor") or [{}]
    if isinstance(vendor, list):
        vendor = vendor[0] if vendor else {}
    return Integration(
        id=str(doc["_id"]),
        organization=str(doc["organization"]),
        vendor=Vendor(name=vendor.get("name", "")),
        credentials=dict(doc.get("credentials") or {}),
        metadata=dict(doc.get("metadata") or {}),
    )


# =============================================================================
# MONGODB REPOSITORY
# =============================================================================

class MongoRepository:
    """Repository backed by the application MongoDB database."""

    def __init__(self, client: Optional[MongoClient] = None, db_name: str = DB_NAME):
        self.client = client or get_mongo_client()
        self.db = self.client[db_name]

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "MongoRepository":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def get_organization(self, organization_id: str) -> Optional[Organization]:
        doc = self.db[ORGANIZATIONS_COLLECTION].find_one(
            {"_id": _id_filter(organization_id)}
        )
        if doc is None:
            return None
        return Organization(id=str(doc["_id"]), name=doc.get("name", ""))

    def get_index(self, organization_id: str) -> Optional[KnowledgeIndex]:
        doc = self.db[INDEXES_COLLECTION].find_one(
            {"organization": _id_filter(organization_id)}
        )
        if doc is None:
            return None
        return KnowledgeIndex(
            id=str(doc["_id"]),
            organization=str(doc["organization"]),
            name=doc["name"],
            type=doc["type"],
        )

    def _integrations_pipeline(self, match: dict) -> list[dict]:
        # Equivalent of populating the vendor reference
        return [
            {"$match": match},
            {"$lookup": {
                "from": VENDORS_COLLECTION,
                "localField": "vendor",
                "foreignField": "_id",
                "as": "vendor",
            }},
        ]

    def get_integrations(self, organization_id: str) -> list[Integration]:
        pipeline = self._integrations_pipeline(
            {"organization": _id_filter(organization_id)}
        )
        return [
            _to_integration(doc)
            for doc in self.db[INTEGRATIONS_COLLECTION].aggregate(pipeline)
        ]

    def get_integration_by_vendor(
        self, vendor_name: str, organization_id: str
    ) -> Optional[Integration]:
        for integration in self.get_integrations(organization_id):
            if integration.vendor.name == vendor_name:
                return integration
        return None


# =============================================================================
# SECRET MANAGER
# =============================================================================

class MongoSecretManager:
    """
    Credential store keeping one document per integration:

        {"_id": <integration id>, "credentials": {"access_token": "..."}}

    Stored credentials override the references kept on the integration.
    """

    def __init__(self, client: Optional[MongoClient] = None, db_name: str = DB_NAME):
        self.client = client or get_mongo_client()
        self.collection = self.client[db_name][SECRETS_COLLECTION]

    def populate_credentials(self, integrations: list[Integration]) -> list[Integration]:
        populated = []
        for integration in integrations:
            doc = None
            if integration.id is not None:
                doc = self.collection.find_one({"_id": _id_filter(integration.id)})
            if doc is None:
                LOGGER.debug(
                    "no stored secrets for %s integration %s",
                    integration.vendor.name,
                    integration.id,
                )
                populated.append(integration)
                continue
            credentials = {**integration.credentials, **doc.get("credentials", {})}
            populated.append(integration.model_copy(update={"credentials": credentials}))
        return populated
