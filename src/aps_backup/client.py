"""HTTP client for the APS Data Management and Authentication APIs."""

import logging
from typing import Any, Iterable
from urllib.parse import urlencode

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_SCOPES, Config
from .exceptions import UpstreamError
from .models import ContainerNode, NodeType, Version

logger = logging.getLogger(__name__)

USERINFO_URL = "https://api.userprofile.autodesk.com/userinfo"

_NODE_TYPES = {t.value for t in NodeType}


def build_session(config: Config) -> requests.Session:
    """Return a ``requests.Session`` that retries throttled and 5xx responses."""
    session = requests.Session()
    retry = Retry(
        total=config.max_retries,
        backoff_factor=config.backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"Accept": "application/vnd.api+json, application/json"})
    return session


def _parse_nodes(entries: Iterable[dict[str, Any]]) -> list[ContainerNode]:
    nodes = []
    for entry in entries:
        if entry.get("type") not in _NODE_TYPES:
            logger.debug("Ignoring resource %s of type %s", entry.get("id"), entry.get("type"))
            continue
        nodes.append(ContainerNode.from_json(entry))
    return nodes


class DataManagementClient:
    """
    Thin wrapper over the REST endpoints the backup needs.

    Built once per process and shared; it holds no per-user state. Every
    data call takes the bearer token explicitly.
    """

    def __init__(self, config: Config, session: requests.Session | None = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = session or build_session(config)

    # -- plumbing -----------------------------------------------------------

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        stream: bool = False,
        **kwargs: Any,
    ) -> requests.Response:
        url = self._url(path)
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                stream=stream,
                timeout=self.config.request_timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"{method} {url} failed: {e}", {"url": url}) from e

        if not response.ok:
            status = response.status_code
            detail = response.text[:200] if not stream else response.reason
            response.close()
            raise UpstreamError(
                f"{method} {url} returned {status}: {detail}",
                {"url": url},
                status_code=status,
            )
        return response

    def _get_json(self, path: str, token: str) -> dict[str, Any]:
        response = self._request("GET", path, token)
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {response.url}", {"url": response.url}) from e

    def _get_collection(self, path: str, token: str) -> list[dict[str, Any]]:
        """GET a JSON:API collection, following ``links.next`` pages in order."""
        entries: list[dict[str, Any]] = []
        next_url: str | None = path
        while next_url:
            body = self._get_json(next_url, token)
            entries.extend(body.get("data") or [])
            next_link = (body.get("links") or {}).get("next")
            next_url = next_link.get("href") if isinstance(next_link, dict) else next_link
        return entries

    # -- data management ----------------------------------------------------

    def list_hubs(self, token: str) -> list[ContainerNode]:
        return _parse_nodes(self._get_collection("project/v1/hubs", token))

    def list_projects(self, hub_id: str, token: str) -> list[ContainerNode]:
        return _parse_nodes(self._get_collection(f"project/v1/hubs/{hub_id}/projects", token))

    def list_top_level_contents(
        self, hub_id: str, project_id: str, token: str
    ) -> list[ContainerNode]:
        path = f"project/v1/hubs/{hub_id}/projects/{project_id}/topFolders"
        return _parse_nodes(self._get_collection(path, token))

    def list_folder_contents(
        self, project_id: str, folder_id: str, token: str
    ) -> list[ContainerNode]:
        path = f"data/v1/projects/{project_id}/folders/{folder_id}/contents"
        return _parse_nodes(self._get_collection(path, token))

    def list_children(
        self, hub_id: str, project_id: str, folder_id: str | None, token: str
    ) -> list[ContainerNode]:
        """List a project's top level (no folder id) or one folder's contents."""
        if folder_id:
            return self.list_folder_contents(project_id, folder_id, token)
        return self.list_top_level_contents(hub_id, project_id, token)

    def list_item_versions(self, project_id: str, item_id: str, token: str) -> list[Version]:
        """List an item's versions in service order (newest first)."""
        path = f"data/v1/projects/{project_id}/items/{item_id}/versions"
        return [
            Version.from_json(entry)
            for entry in self._get_collection(path, token)
            if entry.get("type") == NodeType.VERSION.value
        ]

    def get_item(self, project_id: str, item_id: str, token: str) -> ContainerNode:
        body = self._get_json(f"data/v1/projects/{project_id}/items/{item_id}", token)
        return ContainerNode.from_json(body["data"])

    def open_version_content(self, storage_url: str, token: str) -> requests.Response:
        """Open a streaming GET against a version's storage location.

        The caller owns the returned response and must close it.
        """
        return self._request("GET", storage_url, token, stream=True)

    # -- authentication -----------------------------------------------------

    def get_user_profile(self, token: str) -> dict[str, Any]:
        return self._get_json(USERINFO_URL, token)

    def authorization_url(self, scopes: Iterable[str] = DEFAULT_SCOPES) -> str:
        """URL the user opens in a browser to grant access (three-legged OAuth)."""
        query = urlencode({
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.callback_url,
            "scope": " ".join(scopes),
        })
        return f"{self.base_url}/authentication/v2/authorize?{query}"

    def _token_request(self, form: dict[str, str]) -> dict[str, Any]:
        response = self._request(
            "POST",
            "authentication/v2/token",
            data=form,
            auth=(self.config.client_id, self.config.client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return response.json()

    def exchange_code(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for access and refresh tokens."""
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.callback_url,
        })

    def refresh_access_token(
        self, refresh_token: str, scopes: Iterable[str] = DEFAULT_SCOPES
    ) -> dict[str, Any]:
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(scopes),
        })
