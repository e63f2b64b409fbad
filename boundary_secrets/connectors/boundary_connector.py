"""
Boundary Connector for boundary-secrets.

Talks to a Boundary controller's HTTP API to create and delete the
password accounts and users backing dynamic credentials.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..models import BoundaryConfig
from .base_connector import BaseConnector, ConnectorResult, RemoteSession, ResultStatus

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUS_CODES = (502, 503, 504)


class BoundaryConnector(BaseConnector):
    """Boundary connector managing password accounts and users over HTTP."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 http: Optional[requests.Session] = None):
        super().__init__(config, mock_mode=False)

        # One HTTP session for connection reuse across requests
        self.http = http or requests.Session()
        self.http.headers.update({"Accept": "application/json"})
        self.http.verify = self.config.get('tls_verify', True)

    def _authenticate(self, config: BoundaryConfig, timeout: float) -> ConnectorResult:
        """Log in through the password auth method and return the bearer token."""
        url = f"{config.addr}/v1/auth-methods/{config.auth_method_id}:authenticate"
        body = {
            "command": "login",
            "attributes": {
                "login_name": config.login_name,
                "password": config.password,
            },
        }

        result = self._send("POST", url, None, timeout, json=body,
                            description=f"authenticate on {config.auth_method_id}")
        if not result.success:
            # A bad login is reported as 400/401 depending on server version
            if result.status == ResultStatus.FAILED and result.data and result.data.get("status_code") == 400:
                result.status = ResultStatus.UNAUTHENTICATED
            return result

        data = result.data if isinstance(result.data, dict) else {}
        token = (data.get("attributes") or {}).get("token")
        if not token:
            return ConnectorResult(False, "Authentication response did not include a token",
                                   error="missing token", status=ResultStatus.UNAUTHENTICATED)
        return ConnectorResult(True, "Authenticated", {"token": token})

    def create_account(self, session: RemoteSession, auth_method_id: str, login_name: str,
                       password: str, timeout: Optional[float] = None) -> ConnectorResult:
        """Create a password account under the auth method."""
        body = {
            "auth_method_id": auth_method_id,
            "type": "password",
            "attributes": {
                "login_name": login_name,
                "password": password,
            },
        }
        result = self._request("POST", "accounts", session, timeout, json=body,
                               description=f"create account {login_name}")
        return self._require_id(result)

    def get_account(self, session: RemoteSession, account_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        return self._request("GET", f"accounts/{account_id}", session, timeout,
                             description=f"get account {account_id}")

    def delete_account(self, session: RemoteSession, account_id: str,
                       timeout: Optional[float] = None) -> ConnectorResult:
        return self._request("DELETE", f"accounts/{account_id}", session, timeout,
                             description=f"delete account {account_id}")

    def create_user(self, session: RemoteSession, scope_id: str, name: str, description: str = "",
                    timeout: Optional[float] = None) -> ConnectorResult:
        """Create a user in the given scope."""
        body = {"scope_id": scope_id, "name": name, "description": description}
        result = self._request("POST", "users", session, timeout, json=body,
                               description=f"create user {name}")
        return self._require_id(result)

    def add_accounts_to_user(self, session: RemoteSession, user_id: str, version: int,
                             account_ids: List[str], timeout: Optional[float] = None) -> ConnectorResult:
        """Associate accounts with a user (optimistic locking on version)."""
        body = {"version": version, "account_ids": account_ids}
        return self._request("POST", f"users/{user_id}:add-accounts", session, timeout, json=body,
                             description=f"add accounts to user {user_id}")

    def get_user(self, session: RemoteSession, user_id: str,
                 timeout: Optional[float] = None) -> ConnectorResult:
        return self._request("GET", f"users/{user_id}", session, timeout,
                             description=f"get user {user_id}")

    def delete_user(self, session: RemoteSession, user_id: str,
                    timeout: Optional[float] = None) -> ConnectorResult:
        return self._request("DELETE", f"users/{user_id}", session, timeout,
                             description=f"delete user {user_id}")

    def _request(self, method: str, path: str, session: RemoteSession, timeout: Optional[float],
                 json: Optional[Dict[str, Any]] = None, description: str = "") -> ConnectorResult:
        url = f"{session.address}/v1/{path}"
        return self._send(method, url, session.token, timeout, json=json, description=description)

    def _send(self, method: str, url: str, token: Optional[str], timeout: Optional[float],
              json: Optional[Dict[str, Any]] = None, description: str = "") -> ConnectorResult:
        """Perform one HTTP call and classify the outcome."""
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            response = self.http.request(method, url, json=json, headers=headers,
                                         timeout=timeout or self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            error_msg = f"Failed to {description}: {e}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=str(e), status=ResultStatus.UNAVAILABLE)
        except requests.RequestException as e:
            error_msg = f"Failed to {description}: {e}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=str(e))

        return self._to_result(response, description)

    def _to_result(self, response: requests.Response, description: str) -> ConnectorResult:
        if response.ok:
            try:
                data = response.json() if response.content else {}
            except ValueError as e:
                error_msg = f"Failed to {description}: HTTP {response.status_code} with unreadable body: {e}"
                logger.error(error_msg)
                return ConnectorResult(False, error_msg, error=str(e))
            return ConnectorResult(True, f"{description} succeeded", data)

        error = self._error_message(response)
        if response.status_code == 404:
            return ConnectorResult(False, f"{description}: not found", error=error,
                                   status=ResultStatus.NOT_FOUND)
        if response.status_code == 401:
            status = ResultStatus.UNAUTHENTICATED
        elif response.status_code in UNAVAILABLE_STATUS_CODES:
            status = ResultStatus.UNAVAILABLE
        else:
            status = ResultStatus.FAILED

        error_msg = f"Failed to {description}: HTTP {response.status_code} {error}"
        logger.error(error_msg)
        return ConnectorResult(False, error_msg, data={"status_code": response.status_code},
                               error=error, status=status)

    @staticmethod
    def _require_id(result: ConnectorResult) -> ConnectorResult:
        """Fail a create whose reply does not name the new object."""
        if result.success and not (isinstance(result.data, dict) and result.data.get("id")):
            error_msg = f"{result.message}, but the reply has no id"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error="missing id in response")
        return result

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason or ""
        if isinstance(body, dict):
            return body.get("message") or body.get("kind") or str(body)
        return str(body)
