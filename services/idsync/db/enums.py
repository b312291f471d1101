"""Enumerations stored in the portal database."""

from enum import StrEnum


class UserStatus(StrEnum):
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    INACTIVE = "INACTIVE"
    DELETED = "DELETED"


class IdentityType(StrEnum):
    COMPANY_USER = "COMPANY_USER"
    COMPANY_SERVICE_ACCOUNT = "COMPANY_SERVICE_ACCOUNT"


class ServiceAccountType(StrEnum):
    """Who manages the account: the owning company or an offer provider."""

    OWN = "OWN"
    MANAGED = "MANAGED"


class ServiceAccountKind(StrEnum):
    """INTERNAL accounts live in the IAM gateway; EXTERNAL ones are provisioned elsewhere."""

    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class IamClientAuthMethod(StrEnum):
    SECRET = "SECRET"
    JWT = "JWT"


class ProcessType(StrEnum):
    OFFER_SUBSCRIPTION = "OFFER_SUBSCRIPTION"
    DIM_TECHNICAL_USER = "DIM_TECHNICAL_USER"
    APPLICATION_CHECKLIST = "APPLICATION_CHECKLIST"


class ProcessStepType(StrEnum):
    OFFER_SUBSCRIPTION_CREATE_DIM_TECHNICAL_USER = "OFFER_SUBSCRIPTION_CREATE_DIM_TECHNICAL_USER"
    CREATE_DIM_TECHNICAL_USER = "CREATE_DIM_TECHNICAL_USER"
    RETRIGGER_CREATE_DIM_TECHNICAL_USER = "RETRIGGER_CREATE_DIM_TECHNICAL_USER"


class ProcessStepStatus(StrEnum):
    TODO = "TODO"
    DONE = "DONE"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    DUPLICATE = "DUPLICATE"


class IdentityProviderCategory(StrEnum):
    KEYCLOAK_SHARED = "KEYCLOAK_SHARED"
    KEYCLOAK_OIDC = "KEYCLOAK_OIDC"
    KEYCLOAK_SAML = "KEYCLOAK_SAML"


class LinkPolicy(StrEnum):
    """How user links of a provider category may be changed by bulk upload."""

    SHARED = "SHARED"
    EXTERNAL = "EXTERNAL"


LINK_POLICY_BY_CATEGORY: dict[IdentityProviderCategory, LinkPolicy] = {
    IdentityProviderCategory.KEYCLOAK_SHARED: LinkPolicy.SHARED,
    IdentityProviderCategory.KEYCLOAK_OIDC: LinkPolicy.EXTERNAL,
    IdentityProviderCategory.KEYCLOAK_SAML: LinkPolicy.EXTERNAL,
}

# Initial step of the process that provisions an externally managed account.
INITIAL_SA_CREATION_STEP: dict[ProcessType, ProcessStepType] = {
    ProcessType.OFFER_SUBSCRIPTION: ProcessStepType.OFFER_SUBSCRIPTION_CREATE_DIM_TECHNICAL_USER,
    ProcessType.DIM_TECHNICAL_USER: ProcessStepType.CREATE_DIM_TECHNICAL_USER,
}
