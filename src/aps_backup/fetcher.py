"""Resolve an item's latest version and open its content."""

import logging
from typing import TYPE_CHECKING

from .config import Config
from .exceptions import AuthMissing, BackupError, NoVersionFound, UpstreamError
from .models import FetchedContent
from .utils import call_with_timeout, select_latest_version

if TYPE_CHECKING:
    from .client import DataManagementClient

logger = logging.getLogger(__name__)


class ContentFetcher:
    """Turns an (project, item) reference into a named byte stream."""

    def __init__(self, client: "DataManagementClient", config: Config):
        self.client = client
        self.config = config

    def fetch_content(self, project_id: str, item_id: str, token: str) -> FetchedContent:
        """
        Fetch the latest version of an item.

        Args:
            project_id: Project holding the item
            item_id: Item to fetch
            token: Bearer token

        Returns:
            The version's display name and an open, unread stream

        Raises:
            NoVersionFound: No version or no storage location
            FetchTimeout: Version listing exceeded ``version_timeout``
            UpstreamError: Any other service or network failure
        """
        if not token:
            raise AuthMissing("Access token is missing")

        context = {"project_id": project_id, "item_id": item_id, "node_type": "items"}

        versions = call_with_timeout(
            self.client.list_item_versions,
            self.config.version_timeout,
            project_id,
            item_id,
            token,
            description=f"list versions of item {item_id}",
        )

        latest = select_latest_version(versions)
        if latest is None:
            raise NoVersionFound(f"Item {item_id} has no versions", context)
        if not latest.storage_url:
            raise NoVersionFound(
                f"Version {latest.id} of item {item_id} has no storage location",
                {**context, "version_id": latest.id},
            )

        logger.debug("Opening %s (version %s) for item %s", latest.name, latest.id, item_id)
        try:
            stream = self.client.open_version_content(latest.storage_url, token)
        except BackupError:
            raise
        except Exception as e:
            raise UpstreamError(f"Failed to open content of item {item_id}: {e}", context) from e

        return FetchedContent(name=latest.name, stream=stream, version=latest)
