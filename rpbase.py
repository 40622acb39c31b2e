#!/usr/bin/python3
################################################################################

import getpass
import json
import logging
from typing import Any, Dict, List, Optional, TypedDict

import requests
import urllib3

from rpmodels import ApiResponse, Copy, GatewayError, Task


class Creds(TypedDict, total=False):
    RPURL: str
    RPUSER: str
    RPPASS: str
    VERIFY: bool


# Configure logging
logger = logging.getLogger(__name__)
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

API_PATH = "/fapi/rest/5_1"
IMAGE_ACCESS_BODY = {"mode": "LOGGED_ACCESS", "scenario": "UNKNOWN"}
REQUEST_TIMEOUT = 60


def create_credentials(
    url: str,
    user: str,
    password: Optional[str] = None,
    verify: bool = False,
) -> Creds:
    """
    Create credentials dictionary with password prompt if not provided

    Args:
        url: RecoverPoint appliance base URL
        user: Username
        password: Password (will prompt if None)
        verify: Verify the appliance TLS certificate

    Returns:
        Creds dictionary ready for Client initialization
    """
    if not password:
        password = getpass.getpass(f"provide password for user '{user}': ")

    return {
        "RPURL": url.rstrip("/"),
        "RPUSER": user,
        "RPPASS": password,
        "VERIFY": verify,
    }


def parse_copy(settings: Dict[str, Any]) -> Copy:
    """Build a Copy from one groupCopiesSettings element"""
    copy_uid = settings.get("copyUID") or {}
    global_uid = copy_uid.get("globalCopyUID") or {}
    image_access = settings.get("imageAccessInformation") or {}
    image_info = image_access.get("imageInformation") or {}
    return Copy(
        name=settings.get("name", ""),
        group_id=(copy_uid.get("groupUID") or {}).get("id", 0),
        cluster_id=(global_uid.get("clusterUID") or {}).get("id", 0),
        copy_id=global_uid.get("copyUID", 0),
        role=(settings.get("roleInfo") or {}).get("role", ""),
        image_access_enabled=bool(image_access.get("imageAccessEnabled", False)),
        image_mode=image_info.get("mode", "") or "",
    )


class Client:
    """
    Thin RecoverPoint REST gateway.

    Read calls return typed records and raise GatewayError on failure.
    Mutating calls return an ApiResponse; the caller decides what a
    rejection means.
    """

    def __init__(self, creds: Creds, session: Optional[requests.Session] = None):
        self.creds = creds
        self.base_url = creds["RPURL"] + API_PATH
        self.session = session
        self.login()

    def login(self) -> None:
        if self.session is None:
            self.session = requests.Session()
        self.session.auth = (self.creds["RPUSER"], self.creds["RPPASS"])
        self.session.headers.update({"Content-Type": "application/json"})
        self.session.verify = self.creds.get("VERIFY", False)
        if not self.session.verify:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        logger.debug(f"Session prepared for {self.creds['RPUSER']}@{self.creds['RPURL']}")

    def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> requests.Response:
        url = self.base_url + path
        data = json.dumps(payload) if payload is not None else None
        try:
            response = self.session.request(method, url, data=data, timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"{method} {url} failed: {e}")
        logger.debug(f"{method} {url} -> {response.status_code}")
        return response

    def _get(self, path: str) -> Any:
        response = self._request("GET", path)
        if not 200 <= response.status_code < 300:
            raise GatewayError(
                f"GET {path} returned {response.status_code}: {response.text}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError(f"GET {path} returned invalid JSON: {e}")

    def _put(self, path: str, payload: Optional[Dict[str, Any]] = None) -> ApiResponse:
        response = self._request("PUT", path, payload)
        return ApiResponse(status_code=response.status_code, body=response.text or "")

    @staticmethod
    def _copy_path(task: Task, operation: str) -> str:
        return (
            f"/groups/{task.group_id}/clusters/{task.cluster_id}"
            f"/copies/{task.copy_id}/{operation}"
        )

    def list_groups(self) -> List[int]:
        data = self._get("/groups/")
        return [g["id"] for g in data.get("innerSet", [])]

    def get_group_name(self, group_id: int) -> str:
        data = self._get(f"/groups/{group_id}/name/")
        return data.get("string", "")

    def get_group_copies(self, group_id: int) -> List[Copy]:
        """Copies of a group in API order"""
        data = self._get(f"/groups/{group_id}/settings/")
        return [parse_copy(cs) for cs in data.get("groupCopiesSettings", [])]

    def list_user_administered_groups(self) -> List[int]:
        """Group ids the authenticated user may administer"""
        data = self._get("/users/settings/")
        allowed: List[int] = []
        for user in data.get("users", []):
            if user.get("name") == self.creds["RPUSER"]:
                allowed = [g["id"] for g in user.get("groups", [])]
        return allowed

    def set_image_access(self, task: Task) -> ApiResponse:
        operation = "image_access/latest/enable" if task.enable else "disable_image_access"
        return self._put(self._copy_path(task, operation), IMAGE_ACCESS_BODY)

    def set_direct_access(self, task: Task) -> ApiResponse:
        operation = "enable_direct_access" if task.enable else "disable_direct_access"
        return self._put(self._copy_path(task, operation))

    def start_transfer(self, task: Task) -> ApiResponse:
        return self._put(self._copy_path(task, "start_transfer"))
