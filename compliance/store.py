"""
Document store interface and its YAML file implementation.

The store mirrors a hierarchical per-user layout:

    users:
      <ownerId>:
        vehicles:   {<vehicleId>: {...}}
        licenses:   {<documentId>: {vehicleId: ..., expireDate: ...}}
        insurance:  {<documentId>: {vehicleId: ..., expireDate: ...}}

Every read re-loads the file; writes are read-modify-write partial merges
with no locking (last write wins).
"""

import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .document import ComplianceDocument
from .errors import StoreError, VehicleNotFoundError, require_owner
from .service_definition import get_definition
from .vehicle import VehicleRecord

logger = logging.getLogger(__name__)

DOCUMENT_COLLECTIONS = {
    "license": "licenses",
    "insurance": "insurance",
}


def collection_for(doc_type: str) -> str:
    """Collection name that holds documents of doc_type."""
    definition = get_definition(doc_type)
    if not definition.is_document:
        raise ValueError(f"'{doc_type}' is not a document type")
    return DOCUMENT_COLLECTIONS[doc_type]


class DocumentStore:
    """
    Async interface to the per-user document store.

    Subclasses implement the six operations below. Every call is a
    suspension point.
    """

    async def list_vehicles(self, owner_id: str) -> List[VehicleRecord]:
        raise NotImplementedError

    async def get_vehicle(self, owner_id: str, vehicle_id: str) -> Optional[VehicleRecord]:
        raise NotImplementedError

    async def update_vehicle(self, owner_id: str, vehicle_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def list_documents(self, owner_id: str, vehicle_id: str, doc_type: str) -> List[ComplianceDocument]:
        raise NotImplementedError

    async def update_document(self, owner_id: str, doc_type: str, document_id: str, fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def add_document(self, owner_id: str, doc_type: str, fields: Dict[str, Any]) -> str:
        """Create a license or insurance document and return its id."""
        raise NotImplementedError


class YamlDocumentStore(DocumentStore):
    """DocumentStore backed by a single YAML file."""

    def __init__(self, filename: Union[str, Path]):
        self.filename = Path(filename)

    def _load_raw(self) -> Dict[str, Any]:
        try:
            with open(self.filename, "r", encoding="utf-8") as fp:
                data = yaml.load(fp, Loader=yaml.SafeLoader)
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Cannot read store {self.filename}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreError(f"Store {self.filename} must contain a mapping")
        return data

    def _dump_raw(self, data: Dict[str, Any]) -> None:
        try:
            with open(self.filename, "w", encoding="utf-8") as fp:
                yaml.dump(
                    data,
                    fp,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                    width=120,
                )
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Cannot write store {self.filename}: {e}") from e

    @staticmethod
    def _user(data: Dict[str, Any], owner_id: str) -> Dict[str, Any]:
        users = data.get("users") or {}
        return users.get(owner_id) or {}

    @staticmethod
    def _key(mapping: Dict[Any, Any], item_id: str) -> Optional[Any]:
        # YAML may load unquoted ids as ints
        for key in mapping:
            if str(key) == item_id:
                return key
        return None

    async def list_vehicles(self, owner_id: str) -> List[VehicleRecord]:
        require_owner(owner_id)
        vehicles = self._user(self._load_raw(), owner_id).get("vehicles") or {}
        return [
            VehicleRecord.from_document(owner_id, str(vehicle_id), fields)
            for vehicle_id, fields in vehicles.items()
        ]

    async def get_vehicle(self, owner_id: str, vehicle_id: str) -> Optional[VehicleRecord]:
        require_owner(owner_id)
        vehicles = self._user(self._load_raw(), owner_id).get("vehicles") or {}
        key = self._key(vehicles, vehicle_id)
        if key is None:
            return None
        return VehicleRecord.from_document(owner_id, vehicle_id, vehicles[key])

    async def update_vehicle(self, owner_id: str, vehicle_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into the vehicle document (partial update)."""
        require_owner(owner_id)
        data = self._load_raw()
        vehicles = self._user(data, owner_id).get("vehicles") or {}
        key = self._key(vehicles, vehicle_id)
        if key is None:
            raise VehicleNotFoundError(owner_id, vehicle_id)

        record = vehicles[key] or {}
        record.update(fields)
        vehicles[key] = record
        self._dump_raw(data)
        logger.debug("Updated vehicle %s fields %s", vehicle_id, sorted(fields))

    async def list_documents(self, owner_id: str, vehicle_id: str, doc_type: str) -> List[ComplianceDocument]:
        require_owner(owner_id)
        collection = collection_for(doc_type)
        documents = self._user(self._load_raw(), owner_id).get(collection) or {}
        return [
            ComplianceDocument.from_document(doc_type, str(document_id), fields or {})
            for document_id, fields in documents.items()
            if str((fields or {}).get("vehicleId")) == vehicle_id
        ]

    async def update_document(self, owner_id: str, doc_type: str, document_id: str, fields: Dict[str, Any]) -> None:
        """Merge fields into a license or insurance document."""
        require_owner(owner_id)
        collection = collection_for(doc_type)
        data = self._load_raw()
        documents = self._user(data, owner_id).get(collection) or {}
        key = self._key(documents, document_id)
        if key is None:
            raise StoreError(f"{doc_type} document '{document_id}' not found")

        record = documents[key] or {}
        record.update(fields)
        documents[key] = record
        self._dump_raw(data)
        logger.debug("Updated %s document %s", doc_type, document_id)

    async def add_document(self, owner_id: str, doc_type: str, fields: Dict[str, Any]) -> str:
        """
        Create a license or insurance document.

        The id is the document's vehicleId, suffixed when already taken.
        """
        require_owner(owner_id)
        collection = collection_for(doc_type)
        data = self._load_raw()
        users = data.get("users") or {}
        data["users"] = users
        user = users.get(owner_id) or {}
        users[owner_id] = user
        documents = user.get(collection) or {}
        user[collection] = documents

        document_id = str(fields.get("vehicleId") or doc_type)
        if self._key(documents, document_id) is not None:
            document_id = f"{document_id}-{uuid.uuid4().hex[:8]}"
        documents[document_id] = dict(fields)
        self._dump_raw(data)
        logger.debug("Added %s document %s", doc_type, document_id)
        return document_id


async def load_compliance_documents(
    store: DocumentStore, owner_id: str, vehicle_id: str
) -> List[ComplianceDocument]:
    """All license and insurance documents for a vehicle, license first."""
    documents: List[ComplianceDocument] = []
    for doc_type in DOCUMENT_COLLECTIONS:
        documents.extend(await store.list_documents(owner_id, vehicle_id, doc_type))
    return documents
