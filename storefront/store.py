"""Product collection store.

Every operation reads the whole collection from the backend, changes it in
memory and, for mutations, writes the whole collection back. A lock keeps
load-mutate-save sequences from interleaving inside one process.

Stored records are plain dicts and are returned exactly as stored; only
client input goes through the pydantic models. The ``*_result`` methods
return ``Ok`` or ``Degraded`` for the whole operation, the plain methods
return just the value.
"""

import logging
import secrets
import string
import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from storefront.database import Backend, Degraded, Err, Ok, Outcome
from storefront.errors import BackendError, NotFoundError, ValidationError
from storefront.schemas import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

ID_PREFIX = "custom-"
ID_SUFFIX_LENGTH = 9
_ID_ALPHABET = string.ascii_lowercase + string.digits
REQUIRED_FIELDS = ("name", "price", "description")

Record = Dict[str, Any]


def generate_product_id() -> str:
    """``custom-<epoch millis>-<9 base36 chars>``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
    return f"{ID_PREFIX}{int(time.time() * 1000)}-{suffix}"


def timestamp() -> str:
    """UTC time as ``2024-01-01T12:00:00.000Z``. Fixed width, so strings sort by time."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _describe(error: SchemaError) -> str:
    """Flatten pydantic errors into one message, e.g. ``price: Field required``."""
    parts = []
    for item in error.errors():
        where = ".".join(str(loc) for loc in item["loc"]) or "body"
        parts.append(f"{where}: {item['msg']}")
    return "; ".join(parts)


def _combine(value: Any, *outcomes: Outcome) -> Outcome:
    reasons = [o.reason for o in outcomes if isinstance(o, Degraded)]
    if reasons:
        return Degraded(value, "; ".join(reasons))
    return Ok(value)


class ProductStore:
    """List, create, update and delete products held by one ``Backend``."""

    def __init__(self, backend: Backend):
        self.backend = backend
        self._lock = threading.Lock()

    def _load(self) -> Outcome:
        outcome = self.backend.load_result()
        if isinstance(outcome, Err):
            raise BackendError(outcome.reason)
        if any(not isinstance(record, dict) for record in outcome.data):
            logger.error(f"{self.backend.name} holds a non-object product record")
            raise BackendError("Stored product collection is invalid")
        return outcome

    def _save(self, records: List[Record], loaded: Outcome) -> Outcome:
        outcome = self.backend.save_result(records, loaded)
        if isinstance(outcome, Err):
            raise BackendError(outcome.reason)
        return outcome

    def list_result(self) -> Outcome:
        return self._load()

    def get_result(self, product_id: str) -> Outcome:
        loaded = self._load()
        for record in loaded.data:
            if record.get("id") == product_id:
                return _combine(record, loaded)
        raise NotFoundError("Product not found")

    def create_result(self, data: Dict[str, Any]) -> Outcome:
        """Validate ``data``, stamp id and timestamps, append it to the collection."""
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        missing = [f for f in REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValidationError("Missing required fields: " + ", ".join(missing))
        try:
            fields = ProductCreate.model_validate(data)
        except SchemaError as e:
            raise ValidationError(_describe(e)) from e

        with self._lock:
            loaded = self._load()
            records = list(loaded.data)
            existing_ids = {r.get("id") for r in records}
            product_id = generate_product_id()
            while product_id in existing_ids:
                product_id = generate_product_id()

            now = timestamp()
            record = {
                "id": product_id,
                **fields.model_dump(by_alias=True, exclude_none=True),
                "createdAt": now,
                "updatedAt": now,
            }
            records.append(record)
            saved = self._save(records, loaded)

        logger.info(f"Created product {product_id} ({record['name']})")
        return _combine(record, loaded, saved)

    def update_result(self, product_id: Optional[str], data: Dict[str, Any]) -> Outcome:
        """Merge the whitelisted fields of ``data`` over the stored record, keeping everything else."""
        if not product_id:
            raise ValidationError("Product ID is required")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        try:
            patch = ProductUpdate.model_validate(data).model_dump(by_alias=True, exclude_unset=True)
        except SchemaError as e:
            raise ValidationError(_describe(e)) from e
        nulled = [f for f in REQUIRED_FIELDS if f in patch and patch[f] is None]
        if nulled:
            raise ValidationError("Required fields cannot be null: " + ", ".join(nulled))
        if "features" in patch and patch["features"] is None:
            patch["features"] = []

        with self._lock:
            loaded = self._load()
            records = list(loaded.data)
            for index, existing in enumerate(records):
                if existing.get("id") == product_id:
                    break
            else:
                raise NotFoundError("Product not found")

            updated = {**existing, **patch, "updatedAt": timestamp()}
            if "imageUrl" in patch and patch["imageUrl"] is None:
                updated.pop("imageUrl", None)
            records[index] = updated
            saved = self._save(records, loaded)

        logger.info(f"Updated product {product_id}: {sorted(patch)}")
        return _combine(updated, loaded, saved)

    def delete_result(self, product_id: Optional[str]) -> Outcome:
        if not product_id:
            raise ValidationError("Product ID is required")

        with self._lock:
            loaded = self._load()
            remaining = [r for r in loaded.data if r.get("id") != product_id]
            if len(remaining) == len(loaded.data):
                raise NotFoundError("Product not found")
            saved = self._save(remaining, loaded)

        logger.info(f"Deleted product {product_id}")
        return _combine(True, loaded, saved)

    def list_products(self) -> List[Record]:
        return self.list_result().data

    def get_product(self, product_id: str) -> Record:
        return self.get_result(product_id).data

    def create_product(self, data: Dict[str, Any]) -> Record:
        return self.create_result(data).data

    def update_product(self, product_id: Optional[str], data: Dict[str, Any]) -> Record:
        return self.update_result(product_id, data).data

    def delete_product(self, product_id: Optional[str]) -> bool:
        return self.delete_result(product_id).data
