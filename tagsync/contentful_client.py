"""Contentful Management API client for tags and entry tag metadata"""

import copy
import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests

from .errors import CatalogUnavailable, RecordStoreError, VersionConflict
from .models import Item, Record

logger = logging.getLogger(__name__)


class ContentfulClient:
    """
    Catalog source and record store backed by the Contentful Management API

    Tags are the selectable items; an entry is the record and its
    metadata.tags links are the membership list, guarded by sys.version.
    """

    BASE_URL = "https://api.contentful.com"
    CONTENT_TYPE = "application/vnd.contentful.management.v1+json"
    PAGE_SIZE = 1000
    MAX_RATE_LIMIT_WAIT = 10.0

    def __init__(self, space_id: str, cma_token: str, environment_id: str = "master",
                 base_url: Optional[str] = None, timeout: float = 10):
        """
        Initialize Contentful client

        Args:
            space_id: Contentful space id
            cma_token: Content Management API access token
            environment_id: Environment within the space
            base_url: Override of the API host (e.g. EU data residency)
            timeout: Request timeout in seconds
        """
        self.space_id = space_id
        self.environment_id = environment_id
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {cma_token}",
            "Content-Type": self.CONTENT_TYPE,
            "Accept": "application/json",
        })
        # Raw entry bodies by (entry id, version); a PUT must send the full entry
        self._entries: Dict[Tuple[str, int], Dict[str, Any]] = {}

    @property
    def environment_path(self) -> str:
        return f"/spaces/{self.space_id}/environments/{self.environment_id}"

    def _request(self, method: str, path: str, headers: Optional[Dict[str, str]] = None,
                 **kwargs) -> requests.Response:
        """
        Make a request, retrying once when rate limited

        Raises:
            requests.exceptions.RequestException: On connection failures or HTTP errors
        """
        url = f"{self.base_url}{path}"
        response = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

        if response.status_code == 429:
            reset = response.headers.get("X-Contentful-RateLimit-Reset", "1")
            try:
                delay = min(float(reset), self.MAX_RATE_LIMIT_WAIT)
            except ValueError:
                delay = 1.0
            logger.warning(f"Rate limited by Contentful, retrying in {delay:.1f}s")
            time.sleep(delay)
            response = self._session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)

        response.raise_for_status()
        return response

    def list_all(self) -> List[Item]:
        """
        Fetch every tag in the environment

        Raises:
            CatalogUnavailable: If any page cannot be fetched
        """
        items: List[Item] = []
        skip = 0

        try:
            while True:
                response = self._request(
                    "GET", f"{self.environment_path}/tags",
                    params={"skip": skip, "limit": self.PAGE_SIZE},
                )
                data = response.json()
                page = data.get("items", [])
                items.extend(Item.from_tag_payload(tag) for tag in page)

                skip += len(page)
                total = data.get("total", skip)
                if not page or skip >= total:
                    break

        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to fetch tags for space {self.space_id}: {e}")
            raise CatalogUnavailable(f"Could not fetch tags: {e}") from e
        except (KeyError, ValueError) as e:
            logger.error(f"Unexpected tag payload from Contentful: {e}")
            raise CatalogUnavailable(f"Unexpected tag payload: {e}") from e

        logger.debug(f"Fetched {len(items)} tags from Contentful")
        return items

    def get(self, record_id: str) -> Record:
        """
        Fetch an entry and its tag links

        Raises:
            RecordStoreError: If the entry cannot be read
        """
        try:
            response = self._request("GET", f"{self.environment_path}/entries/{record_id}")
            entry = response.json()
            version = int(entry["sys"]["version"])
        except requests.exceptions.RequestException as e:
            raise self._store_error(f"Could not read entry {record_id}", record_id, e) from e
        except (KeyError, ValueError) as e:
            raise RecordStoreError(f"Unexpected entry payload for {record_id}: {e}", record_id) from e

        self._remember(record_id, version, entry)
        return Record(id=record_id, version=version, membership_ids=self._tag_ids(entry))

    def update(self, record_id: str, version: int, membership_ids: Sequence[str]) -> Record:
        """
        Replace the entry's tag links, guarded by version

        Raises:
            VersionConflict: If the entry changed since `version` was read
            RecordStoreError: For any other failure
        """
        entry = self._entries.get((record_id, version))
        if entry is None:
            raise RecordStoreError(f"Entry {record_id} v{version} was never read", record_id)

        body = {
            "fields": entry.get("fields", {}),
            "metadata": dict(entry.get("metadata", {}), tags=[
                {"sys": {"type": "Link", "linkType": "Tag", "id": tag_id}}
                for tag_id in membership_ids
            ]),
        }

        try:
            response = self._request(
                "PUT", f"{self.environment_path}/entries/{record_id}",
                headers={"X-Contentful-Version": str(version)},
                json=body,
            )
            updated = response.json()
            new_version = int(updated["sys"]["version"])
        except requests.exceptions.HTTPError as e:
            if e.response is not None and e.response.status_code == 409:
                raise VersionConflict(record_id, version) from e
            raise self._store_error(f"Could not update entry {record_id}", record_id, e) from e
        except requests.exceptions.RequestException as e:
            raise self._store_error(f"Could not update entry {record_id}", record_id, e) from e
        except (KeyError, ValueError) as e:
            raise RecordStoreError(f"Unexpected update response for {record_id}: {e}", record_id) from e
        finally:
            self._entries.pop((record_id, version), None)

        self._remember(record_id, new_version, updated)
        return Record(id=record_id, version=new_version, membership_ids=self._tag_ids(updated))

    def _remember(self, record_id: str, version: int, entry: Dict[str, Any]) -> None:
        for key in [key for key in self._entries if key[0] == record_id]:
            del self._entries[key]
        self._entries[(record_id, version)] = copy.deepcopy(entry)

    @staticmethod
    def _tag_ids(entry: Dict[str, Any]) -> Tuple[str, ...]:
        tags = entry.get("metadata", {}).get("tags", [])
        return tuple(link["sys"]["id"] for link in tags)

    @staticmethod
    def _store_error(message: str, record_id: str,
                     error: requests.exceptions.RequestException) -> RecordStoreError:
        status_code = None
        if isinstance(error, requests.exceptions.HTTPError) and error.response is not None:
            status_code = error.response.status_code
            logger.error(f"HTTP error {status_code}: {error}")
            logger.debug(f"Response: {error.response.text}")
        else:
            logger.error(f"{message}: {error}")
        return RecordStoreError(f"{message}: {error}", record_id, status_code=status_code)
