"""IAM gateway access."""

from .gateway import (
    CentralUserData,
    ClientConfigRolesData,
    IamGateway,
    IdentityProviderLink,
    ServiceAccountData,
)

__all__ = [
    "CentralUserData",
    "ClientConfigRolesData",
    "IamGateway",
    "IdentityProviderLink",
    "ServiceAccountData",
]
