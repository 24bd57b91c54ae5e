import copy
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import requests

from storefront.errors import BackendError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
GITHUB_API_URL = "https://api.github.com"
JSONBIN_API_URL = "https://api.jsonbin.io/v3"
JSONBIN_MAX_BYTES = 90_000


# ------------------------------
# Tagged outcomes
# ------------------------------
@dataclass(frozen=True)
class Ok:
    data: Any = None


@dataclass(frozen=True)
class Degraded:
    """The operation succeeded, but only through the fallback store."""

    data: Any
    reason: str


@dataclass(frozen=True)
class Err:
    reason: str


Outcome = Union[Ok, Degraded, Err]


class Backend:
    """Storage for the whole product collection.

    ``load`` returns ``[]`` for a store that was never written to and raises
    ``BackendError`` when the store cannot be read. ``save`` replaces the
    collection or raises ``BackendError``. The ``_result`` variants return
    ``Ok``, ``Degraded`` or ``Err`` instead of raising.
    """

    name = "backend"

    def load(self) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def save(self, products: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def load_result(self) -> Outcome:
        try:
            return Ok(self.load())
        except BackendError as e:
            return Err(e.message)

    def save_result(self, products: List[Dict[str, Any]], loaded: Optional[Outcome] = None) -> Outcome:
        """Save ``products``. ``loaded`` is the outcome of the read they were built from."""
        try:
            self.save(products)
        except BackendError as e:
            return Err(e.message)
        return Ok(products)


class MemoryBackend(Backend):
    name = "memory"

    def __init__(self, products: Optional[List[Dict[str, Any]]] = None):
        self._products = copy.deepcopy(products or [])

    def load(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._products)

    def save(self, products: List[Dict[str, Any]]) -> None:
        self._products = copy.deepcopy(products)


class FileBackend(Backend):
    """JSON array in a local file, created as ``[]`` on first use."""

    name = "file"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _ensure_file(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write([])
        logger.info(f"Initialized empty product file at {self.path}")

    def _write(self, products: List[Dict[str, Any]]) -> None:
        # Write to a sibling temp file, then swap it in
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(products, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def load(self) -> List[Dict[str, Any]]:
        try:
            self._ensure_file()
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read {self.path}: {e}")
            raise BackendError(f"Could not read product file: {e}") from e
        if not isinstance(data, list):
            raise BackendError(f"Product file {self.path} does not contain a JSON array")
        return data

    def save(self, products: List[Dict[str, Any]]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._write(products)
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise BackendError(f"Could not write product file: {e}") from e


class HTTPBackend(Backend):
    """Shared request plumbing for the remote stores."""

    name = "http"

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def headers(self) -> Dict[str, str]:
        return {}

    def _request(self, method: str, url: str, **kwargs) -> Optional[requests.Response]:
        """Send a request. Returns ``None`` on 404, raises ``BackendError`` on any other failure."""
        try:
            r = requests.request(method, url, headers=self.headers(), timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            logger.error(f"{self.name} timeout on {method} {url}")
            raise BackendError(f"{self.name} storage timeout") from e
        except requests.RequestException as e:
            logger.error(f"{self.name} request failed on {method} {url}: {e}")
            raise BackendError(f"{self.name} storage error: {e}") from e

        if r.status_code == 404:
            return None
        if r.status_code >= 400:
            try:
                err = r.json()
            except ValueError:
                err = {"message": r.text}
            logger.error(f"{self.name} rejected {method} {url}: {r.status_code} {err}")
            raise BackendError(f"{self.name} storage returned {r.status_code}")
        return r

    def _json(self, r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise BackendError(f"{self.name} storage returned invalid JSON") from e

    def _object(self, r: requests.Response) -> Dict[str, Any]:
        data = self._json(r)
        if not isinstance(data, dict):
            raise BackendError(f"{self.name} storage returned unexpected JSON")
        return data

    @staticmethod
    def _as_list(data: Any, source: str) -> List[Dict[str, Any]]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError(f"{source} does not contain a product list")
        return data


class GistBackend(HTTPBackend):
    """Collection stored as one JSON file inside a GitHub Gist."""

    name = "gist"

    def __init__(self, gist_id: str, token: str, filename: str = "products.json",
                 timeout: float = DEFAULT_TIMEOUT, api_url: str = GITHUB_API_URL):
        super().__init__(timeout)
        self.gist_id = gist_id
        self.token = token
        self.filename = filename
        self.url = f"{api_url}/gists/{gist_id}"

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self.token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def load(self) -> List[Dict[str, Any]]:
        r = self._request("GET", self.url)
        if r is None:
            return []
        files = self._object(r).get("files")
        entry = files.get(self.filename) if isinstance(files, dict) else None
        content = (entry.get("content") if isinstance(entry, dict) else None) or "[]"
        try:
            data = json.loads(content)
        except (TypeError, ValueError) as e:
            raise BackendError(f"Gist file {self.filename} is not valid JSON") from e
        return self._as_list(data, f"Gist file {self.filename}")

    def save(self, products: List[Dict[str, Any]]) -> None:
        body = {"files": {self.filename: {"content": json.dumps(products, indent=2)}}}
        if self._request("PATCH", self.url, json=body) is None:
            raise BackendError(f"Gist {self.gist_id} not found")


class JsonBinBackend(HTTPBackend):
    """Collection stored as ``{"products": [...]}`` in a JSONBin.io bin.

    JSONBin rejects large bins, so ``save`` drops non-essential fields when the
    payload exceeds ``max_bytes``.
    """

    name = "jsonbin"

    def __init__(self, bin_id: str, master_key: str, max_bytes: int = JSONBIN_MAX_BYTES,
                 timeout: float = DEFAULT_TIMEOUT, api_url: str = JSONBIN_API_URL):
        super().__init__(timeout)
        self.bin_id = bin_id
        self.master_key = master_key
        self.max_bytes = max_bytes
        self.url = f"{api_url}/b/{bin_id}"

    def headers(self) -> Dict[str, str]:
        return {
            "X-Master-Key": self.master_key,
            "X-Bin-Meta": "false",
            "Content-Type": "application/json",
        }

    def load(self) -> List[Dict[str, Any]]:
        r = self._request("GET", f"{self.url}/latest")
        if r is None:
            return []
        data = self._json(r)
        if isinstance(data, dict):
            # Tolerate responses fetched with metadata on
            data = data.get("record", data)
            data = data.get("products") if isinstance(data, dict) else data
        return self._as_list(data, f"Bin {self.bin_id}")

    def save(self, products: List[Dict[str, Any]]) -> None:
        payload = fit_payload(products, self.max_bytes)
        if self._request("PUT", self.url, data=payload) is None:
            raise BackendError(f"Bin {self.bin_id} not found")


def _serialize(products: List[Dict[str, Any]]) -> bytes:
    return json.dumps({"products": products}, ensure_ascii=False).encode("utf-8")


def fit_payload(products: List[Dict[str, Any]], max_bytes: int) -> bytes:
    """Serialize ``{"products": [...]}``, dropping optional fields until it fits in ``max_bytes``.

    Fields go in order: inline ``data:`` images, ``features``, then any ``imageUrl``.
    """
    payload = _serialize(products)
    if len(payload) <= max_bytes:
        return payload

    steps = (
        ("inline images", lambda p: str(p.get("imageUrl", "")).startswith("data:"), "imageUrl"),
        ("features", lambda p: "features" in p, "features"),
        ("image links", lambda p: "imageUrl" in p, "imageUrl"),
    )
    trimmed = copy.deepcopy(products)
    for label, matches, field_name in steps:
        for product in trimmed:
            if matches(product):
                product.pop(field_name, None)
        payload = _serialize(trimmed)
        logger.warning(f"Payload over {max_bytes} bytes, dropped {label} ({len(payload)} bytes now)")
        if len(payload) <= max_bytes:
            return payload

    raise BackendError(f"Product collection is {len(payload)} bytes, over the {max_bytes} byte limit")


class VercelKVBackend(HTTPBackend):
    """Collection stored as a JSON string under one key of Vercel KV (Upstash Redis REST)."""

    name = "kv"

    def __init__(self, url: str, token: str, key: str = "products", timeout: float = DEFAULT_TIMEOUT):
        super().__init__(timeout)
        self.url = url.rstrip("/")
        self.token = token
        self.key = key

    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def load(self) -> List[Dict[str, Any]]:
        r = self._request("GET", f"{self.url}/get/{self.key}")
        if r is None:
            return []
        value = self._object(r).get("result")
        if value is None:
            return []
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError as e:
                raise BackendError(f"KV key {self.key} is not valid JSON") from e
        return self._as_list(value, f"KV key {self.key}")

    def save(self, products: List[Dict[str, Any]]) -> None:
        r = self._request("POST", f"{self.url}/set/{self.key}", data=json.dumps(products))
        if r is None:
            raise BackendError("KV endpoint not found")
        body = self._object(r)
        if body.get("error"):
            raise BackendError(f"KV rejected write: {body['error']}")


@dataclass
class FallbackBackend(Backend):
    """Primary store mirrored into a secondary one that takes over when the primary fails.

    ``load_result`` mirrors whatever the primary returns into the secondary.
    ``save_result`` writes the secondary first, then the primary, except when
    the collection was read from the secondary: a stale copy never overwrites
    the primary, the change stays in the secondary only.
    """

    primary: Backend
    secondary: Backend

    @property
    def name(self) -> str:
        return f"{self.primary.name}+{self.secondary.name}"

    def load_result(self) -> Outcome:
        try:
            products = self.primary.load()
        except BackendError as e:
            reason = f"{self.primary.name} unavailable: {e.message}"
            try:
                products = self.secondary.load()
            except BackendError as fallback_error:
                return Err(f"{reason}; {self.secondary.name} unavailable: {fallback_error.message}")
            logger.warning(f"Degraded read: {reason}")
            return Degraded(products, reason)

        try:
            self.secondary.save(products)
        except BackendError as e:
            logger.warning(f"Could not mirror products to {self.secondary.name}: {e.message}")
        return Ok(products)

    def save_result(self, products: List[Dict[str, Any]], loaded: Optional[Outcome] = None) -> Outcome:
        secondary_error = None
        try:
            self.secondary.save(products)
        except BackendError as e:
            secondary_error = e.message

        if isinstance(loaded, Degraded):
            if secondary_error is not None:
                return Err(f"{self.secondary.name} unavailable: {secondary_error}")
            reason = f"{self.primary.name} not written, changes kept in {self.secondary.name} only"
            logger.warning(f"Degraded write: {reason}")
            return Degraded(products, reason)

        try:
            self.primary.save(products)
        except BackendError as e:
            reason = f"{self.primary.name} unavailable: {e.message}"
            if secondary_error is not None:
                return Err(f"{reason}; {self.secondary.name} unavailable: {secondary_error}")
            logger.warning(f"Degraded write: {reason}")
            return Degraded(products, reason)

        if secondary_error is not None:
            logger.warning(f"Could not mirror products to {self.secondary.name}: {secondary_error}")
        return Ok(products)

    def load(self) -> List[Dict[str, Any]]:
        outcome = self.load_result()
        if isinstance(outcome, Err):
            raise BackendError(outcome.reason)
        return outcome.data

    def save(self, products: List[Dict[str, Any]]) -> None:
        outcome = self.save_result(products)
        if isinstance(outcome, Err):
            raise BackendError(outcome.reason)
