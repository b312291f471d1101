"""Keycloak admin REST implementation of the IAM gateway.

Authenticates with the client-credentials grant against the auth realm and
operates on the configured managed realm. All transport failures, timeouts,
unexpected status codes and malformed response bodies surface as
ExternalSystemError.
"""

import time
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx

from idsync.config import IamGatewayConfig
from idsync.db.enums import IamClientAuthMethod
from idsync.errors import ClientSetupError, ExternalSystemError, NotFoundError
from idsync.logging_config import get_logger

from .gateway import (
    CentralUserData,
    ClientConfigRolesData,
    IamGateway,
    IdentityProviderLink,
    ServiceAccountData,
)

logger = get_logger(__name__)

_AUTHENTICATOR_TYPES: dict[IamClientAuthMethod, str] = {
    IamClientAuthMethod.SECRET: "client-secret",
    IamClientAuthMethod.JWT: "client-jwt",
}

# Refresh the admin token this many seconds before Keycloak expires it.
_TOKEN_EXPIRY_LEEWAY = 10


def _segment(value: str) -> str:
    return quote(value, safe="")


def _json(resp: httpx.Response, expected: type = dict) -> Any:
    """Decode a response body, which must be JSON of the expected type."""
    what = f"{resp.request.method} {resp.request.url.path}"
    try:
        body = resp.json()
    except ValueError as e:
        raise ExternalSystemError(f"IAM gateway returned invalid JSON for {what}") from e
    if not isinstance(body, expected):
        raise ExternalSystemError(
            f"IAM gateway returned {type(body).__name__} for {what}, expected {expected.__name__}"
        )
    return body


def _field(body: dict[str, Any], key: str, what: str) -> Any:
    try:
        return body[key]
    except KeyError:
        raise ExternalSystemError(f"IAM gateway {what} lacks {key!r}") from None


class KeycloakGateway(IamGateway):
    """IAM gateway backed by the Keycloak admin API."""

    def __init__(self, config: IamGatewayConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_seconds,
        )
        self._token: str | None = None
        self._token_expires_at = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        try:
            await self._ensure_token()
        except (httpx.HTTPError, ExternalSystemError) as e:
            logger.warning("IAM gateway token request failed", error=str(e))
            return False
        return True

    async def _ensure_token(self) -> str:
        """Fetch and cache an admin access token."""
        if self._token is not None and time.monotonic() < self._token_expires_at:
            return self._token

        resp = await self._client.post(
            f"/realms/{_segment(self._config.auth_realm)}/protocol/openid-connect/token",
            data={
                "grant_type": "client_credentials",
                "client_id": self._config.client_id,
                "client_secret": self._config.client_secret,
            },
        )
        resp.raise_for_status()
        body = _json(resp)
        self._token = _field(body, "access_token", "token response")
        expires_in = int(body.get("expires_in", 60))
        self._token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_LEEWAY, 0)
        return self._token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        not_found: str | None = None,
        allow_missing: bool = False,
    ) -> httpx.Response:
        """Call the admin API of the managed realm.

        A 404 raises NotFoundError(not_found) when not_found is given, and is
        returned as-is when allow_missing is set.
        """
        url = f"/admin/realms/{_segment(self._config.realm)}{path}"
        try:
            token = await self._ensure_token()
            resp = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            if resp.status_code == 404:
                if not_found is not None:
                    raise NotFoundError(not_found)
                if allow_missing:
                    return resp
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            logger.warning(
                "IAM gateway request failed",
                method=method,
                path=path,
                status=e.response.status_code,
            )
            raise ExternalSystemError(
                f"IAM gateway {method} {path} failed with status {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("IAM gateway unreachable", method=method, path=path, error=str(e))
            raise ExternalSystemError(f"IAM gateway {method} {path} failed: {e!r}") from e

    async def _get_internal_client_id(self, client_id: str) -> str:
        resp = await self._request("GET", "/clients", params={"clientId": client_id})
        clients = _json(resp, list)
        if not clients or not isinstance(clients[0], dict):
            raise ExternalSystemError(f"client {client_id} does not exist in the IAM gateway")
        return _field(clients[0], "id", f"client {client_id}")

    # --- service-account clients ---

    async def setup_service_account_client(
        self, client_id: str, config: ClientConfigRolesData, enabled: bool
    ) -> ServiceAccountData:
        resp = await self._request(
            "POST",
            "/clients",
            json={
                "clientId": client_id,
                "name": config.name,
                "description": config.description,
                "enabled": enabled,
                "protocol": "openid-connect",
                "publicClient": False,
                "serviceAccountsEnabled": True,
                "standardFlowEnabled": False,
                "directAccessGrantsEnabled": False,
                "clientAuthenticatorType": _AUTHENTICATOR_TYPES[config.auth_method],
            },
        )
        location = resp.headers.get("Location", "")
        internal_client_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not internal_client_id:
            raise ExternalSystemError(f"IAM gateway returned no location for client {client_id}")

        try:
            iam_user_id, secret = await self._configure_client(internal_client_id, config)
        except ExternalSystemError as e:
            logger.warning(
                "Service account client left unconfigured",
                client_id=client_id,
                internal_client_id=internal_client_id,
                error=e.message,
            )
            raise ClientSetupError(
                f"client {client_id} was created but could not be configured: {e.message}",
                client_id=client_id,
                internal_client_id=internal_client_id,
            ) from e

        logger.info(
            "Service account client created",
            client_id=client_id,
            internal_client_id=internal_client_id,
            owning_clients=list(config.client_roles),
        )
        return ServiceAccountData(
            internal_client_id=internal_client_id,
            iam_user_id=iam_user_id,
            auth_method=config.auth_method,
            secret=secret,
        )

    async def _configure_client(
        self, internal_client_id: str, config: ClientConfigRolesData
    ) -> tuple[str, str | None]:
        """Grant the client roles to the service-account user; returns its id and the secret."""
        client_path = f"/clients/{_segment(internal_client_id)}"
        resp = await self._request("GET", f"{client_path}/service-account-user")
        iam_user_id = _field(_json(resp), "id", "service-account user")
        user_path = f"/users/{_segment(iam_user_id)}"

        for owning_client_id, role_names in config.client_roles.items():
            owner_internal_id = await self._get_internal_client_id(owning_client_id)
            roles = []
            for role_name in role_names:
                resp = await self._request(
                    "GET",
                    f"/clients/{_segment(owner_internal_id)}/roles/{_segment(role_name)}",
                )
                roles.append(_json(resp))
            await self._request(
                "POST",
                f"{user_path}/role-mappings/clients/{_segment(owner_internal_id)}",
                json=roles,
            )

        secret = None
        if config.auth_method == IamClientAuthMethod.SECRET:
            resp = await self._request("GET", f"{client_path}/client-secret")
            secret = _json(resp).get("value")
        return iam_user_id, secret

    async def add_bpn_attribute_to_user(self, iam_user_id: str, bpns: Sequence[str]) -> None:
        path = f"/users/{_segment(iam_user_id)}"
        resp = await self._request("GET", path, not_found=f"user {iam_user_id} not found")
        attributes: dict[str, list[str]] = _json(resp).get("attributes") or {}
        existing = attributes.get(self._config.bpn_attribute, [])
        attributes[self._config.bpn_attribute] = existing + [b for b in bpns if b not in existing]
        await self._request("PUT", path, json={"attributes": attributes})

    async def add_protocol_mapper(self, internal_client_id: str) -> None:
        attribute = self._config.bpn_attribute
        await self._request(
            "POST",
            f"/clients/{_segment(internal_client_id)}/protocol-mappers/models",
            json={
                "name": self._config.bpn_mapper_name,
                "protocol": "openid-connect",
                "protocolMapper": "oidc-usermodel-attribute-mapper",
                "config": {
                    "user.attribute": attribute,
                    "claim.name": attribute,
                    "jsonType.label": "String",
                    "multivalued": "true",
                    "id.token.claim": "true",
                    "access.token.claim": "true",
                    "userinfo.token.claim": "true",
                },
            },
        )

    async def delete_client(self, internal_client_id: str) -> None:
        await self._request(
            "DELETE", f"/clients/{_segment(internal_client_id)}", allow_missing=True
        )

    # --- users and identity-provider links ---

    async def get_central_user(self, user_id: str) -> CentralUserData:
        resp = await self._request(
            "GET", f"/users/{_segment(user_id)}", not_found=f"user {user_id} not found"
        )
        body = _json(resp)
        return CentralUserData(
            user_id=_field(body, "id", f"user {user_id}"),
            firstname=body.get("firstName"),
            lastname=body.get("lastName"),
            email=body.get("email"),
        )

    async def update_central_user(
        self, user_id: str, firstname: str, lastname: str, email: str
    ) -> None:
        await self._request(
            "PUT",
            f"/users/{_segment(user_id)}",
            json={"firstName": firstname, "lastName": lastname, "email": email},
            not_found=f"user {user_id} not found",
        )

    async def get_provider_user_links(self, user_id: str) -> list[IdentityProviderLink]:
        resp = await self._request(
            "GET",
            f"/users/{_segment(user_id)}/federated-identity",
            not_found=f"user {user_id} not found",
        )
        links = []
        for item in _json(resp, list):
            if not isinstance(item, dict):
                raise ExternalSystemError(f"IAM gateway returned a malformed link for {user_id}")
            links.append(
                IdentityProviderLink(
                    alias=_field(item, "identityProvider", f"link of user {user_id}"),
                    user_id=item.get("userId") or "",
                    user_name=item.get("userName") or "",
                )
            )
        return links

    async def upsert_provider_user_link(self, user_id: str, link: IdentityProviderLink) -> None:
        # Keycloak has no update for federated identities: replace the link.
        path = f"/users/{_segment(user_id)}/federated-identity/{_segment(link.alias)}"
        await self._request("DELETE", path, allow_missing=True)
        await self._request(
            "POST",
            path,
            json={
                "identityProvider": link.alias,
                "userId": link.user_id,
                "userName": link.user_name,
            },
        )
