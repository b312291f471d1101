"""IAM gateway capability surface.

The gateway is the system of record for client identities and for the
federated identity-provider links of users. Implementations raise
ExternalSystemError for transport failures and timeouts, and NotFoundError
when a referenced user does not exist.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from idsync.db.enums import IamClientAuthMethod


@dataclass(frozen=True)
class ClientConfigRolesData:
    """Everything needed to set up a service-account client."""

    name: str
    description: str
    auth_method: IamClientAuthMethod
    # owning client id -> role names granted from that client
    client_roles: Mapping[str, Sequence[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class ServiceAccountData:
    """Result of creating a service-account client."""

    internal_client_id: str
    iam_user_id: str
    auth_method: IamClientAuthMethod
    secret: str | None = None


@dataclass(frozen=True)
class IdentityProviderLink:
    alias: str
    user_id: str
    user_name: str


@dataclass(frozen=True)
class CentralUserData:
    user_id: str
    firstname: str | None
    lastname: str | None
    email: str | None


class IamGateway(ABC):
    """Operations this service needs from the IAM system."""

    @abstractmethod
    async def setup_service_account_client(
        self, client_id: str, config: ClientConfigRolesData, enabled: bool
    ) -> ServiceAccountData:
        """Create a confidential client with a service account and grant its roles."""

    @abstractmethod
    async def add_bpn_attribute_to_user(self, iam_user_id: str, bpns: Sequence[str]) -> None:
        """Attach business partner numbers to a gateway user."""

    @abstractmethod
    async def add_protocol_mapper(self, internal_client_id: str) -> None:
        """Expose the BPN attribute in tokens issued to the client."""

    @abstractmethod
    async def delete_client(self, internal_client_id: str) -> None:
        """Remove a client; used by cleanup of orphaned clients."""

    @abstractmethod
    async def get_central_user(self, user_id: str) -> CentralUserData:
        """Return name and email of a gateway user."""

    @abstractmethod
    async def update_central_user(
        self, user_id: str, firstname: str, lastname: str, email: str
    ) -> None:
        """Overwrite name and email of a gateway user."""

    @abstractmethod
    async def get_provider_user_links(self, user_id: str) -> list[IdentityProviderLink]:
        """Return the user's current identity-provider links."""

    @abstractmethod
    async def upsert_provider_user_link(self, user_id: str, link: IdentityProviderLink) -> None:
        """Create or replace the user's link for link.alias."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the gateway currently accepts this service's credentials."""
