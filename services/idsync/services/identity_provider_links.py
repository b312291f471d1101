"""Identity-provider link reconciliation from bulk uploads.

Each data row of an upload declares, for one company user, the desired
profile and the desired links to the company's identity providers. The
reconciler compares every row with the IAM gateway's current state and
writes only what differs. Failures are isolated per row: a failing row is
counted and reported, and the upload continues with the next row.

Links of SHARED identity providers are managed centrally; an upload may
not rebind them to another provider user id.
"""

import asyncio
import uuid
from collections.abc import AsyncIterable, Mapping
from dataclasses import dataclass, field

from idsync.config import IdentityProviderCsvSettings
from idsync.db.enums import LINK_POLICY_BY_CATEGORY, LinkPolicy
from idsync.db.repositories import CompanyUserEntityData, PortalRepository
from idsync.errors import (
    ConflictError,
    ExternalSystemError,
    IdSyncError,
    NotFoundError,
    RowFormatError,
    UnauthorizedError,
)
from idsync.iam.gateway import CentralUserData, IamGateway, IdentityProviderLink
from idsync.logging_config import get_logger

from .upload_reader import UploadRowReader, UserLinkRow, iter_lines

logger = get_logger(__name__)

# Errors that fail a single row (or a single link of a row) without aborting
# the upload.
ROW_ERRORS = (RowFormatError, NotFoundError, ConflictError, ExternalSystemError)


@dataclass(frozen=True)
class RowError:
    line: int
    message: str
    error_type: str

    @classmethod
    def from_exception(cls, line: int, error: IdSyncError) -> "RowError":
        return cls(line=line, message=error.message, error_type=type(error).__name__)


@dataclass
class ReconciliationResult:
    """Outcome of an upload. total == updated + unchanged + error always holds."""

    updated: int = 0
    unchanged: int = 0
    error: int = 0
    errors: list[RowError] = field(default_factory=list)
    cancelled: bool = False
    company_id: uuid.UUID | None = None

    @property
    def total(self) -> int:
        return self.updated + self.unchanged + self.error


@dataclass
class _RowOutcome:
    written: bool = False
    errors: list[IdSyncError] = field(default_factory=list)


class IdentityProviderLinkReconciler:
    """Applies identity-provider link uploads for the acting user's company."""

    def __init__(
        self,
        gateway: IamGateway,
        repository: PortalRepository,
        csv_settings: IdentityProviderCsvSettings,
    ) -> None:
        self._gateway = gateway
        self._repository = repository
        self._csv_settings = csv_settings

    async def reconcile_upload(
        self,
        chunks: AsyncIterable[bytes],
        iam_user_id: str,
        cancellation: asyncio.Event | None = None,
    ) -> ReconciliationResult:
        """Reconcile an upload given as a forward-only stream of byte chunks.

        Raises UnauthorizedError for an unknown acting user and
        InvalidHeaderError for an unusable header; every other failure is
        reported per row. When cancellation is set, no further rows are read
        and the result accumulated so far is returned.
        """
        acting_user = await self._repository.get_own_company_and_company_user_id(iam_user_id)
        if acting_user is None:
            raise UnauthorizedError(f"user {iam_user_id} is not assigned to a company")
        company_id = acting_user.company_id

        lines = iter_lines(chunks)
        reader = UploadRowReader(lines, self._csv_settings)
        provider_count = await reader.read_header()

        provider_data = await self._repository.get_company_identity_provider_category_data(
            company_id
        )
        policies = {p.alias: LINK_POLICY_BY_CATEGORY[p.category] for p in provider_data}

        logger.info(
            "Identity provider link upload started",
            company_id=str(company_id),
            providers=provider_count,
            configured_aliases=sorted(policies),
        )

        result = ReconciliationResult(company_id=company_id)
        rows = reader.rows()
        while True:
            if cancellation is not None and cancellation.is_set():
                result.cancelled = True
                logger.info("Identity provider link upload cancelled", processed=result.total)
                break
            try:
                line, raw = await anext(rows)
            except StopAsyncIteration:
                break
            try:
                row = reader.parse_row(line, raw)
                user = await self._repository.get_user_entity_data(row.company_user_id, company_id)
                if user is None:
                    raise NotFoundError(f"unknown company user {row.company_user_id}")
                outcome = await self._reconcile_row(row, user, policies)
            except ROW_ERRORS as e:
                result.error += 1
                result.errors.append(RowError.from_exception(line, e))
                logger.info("Upload row rejected", line=line, error=e.message)
                continue

            if outcome.errors:
                result.error += 1
                result.errors.extend(RowError.from_exception(line, e) for e in outcome.errors)
            elif outcome.written:
                result.updated += 1
            else:
                result.unchanged += 1

        logger.info(
            "Identity provider link upload finished",
            company_id=str(company_id),
            total=result.total,
            updated=result.updated,
            unchanged=result.unchanged,
            error=result.error,
        )
        return result

    async def _reconcile_row(
        self,
        row: UserLinkRow,
        user: CompanyUserEntityData,
        policies: Mapping[str, LinkPolicy],
    ) -> _RowOutcome:
        if not user.user_entity_id:
            raise NotFoundError(f"company user {row.company_user_id} has no IAM user")

        central_user = await self._gateway.get_central_user(user.user_entity_id)
        current_links = {
            link.alias: link
            for link in await self._gateway.get_provider_user_links(user.user_entity_id)
        }

        outcome = _RowOutcome()
        try:
            outcome.written |= await self._update_profile(row, user, central_user)
        except ExternalSystemError as e:
            outcome.errors.append(e)

        for link in row.links:
            try:
                outcome.written |= await self._update_link(
                    user.user_entity_id, link, current_links.get(link.alias), policies
                )
            except ROW_ERRORS as e:
                outcome.errors.append(e)
        return outcome

    async def _update_profile(
        self, row: UserLinkRow, user: CompanyUserEntityData, central_user: CentralUserData
    ) -> bool:
        declared = (row.firstname, row.lastname, row.email)
        # The gateway omits unset attributes; an empty cell declares them unset.
        current = (central_user.firstname, central_user.lastname, central_user.email)
        if declared == tuple(value or "" for value in current):
            return False
        await self._gateway.update_central_user(central_user.user_id, *declared)
        await self._repository.update_company_user_profile(user.company_user_id, *declared)
        return True

    async def _update_link(
        self,
        user_entity_id: str,
        link: IdentityProviderLink,
        current: IdentityProviderLink | None,
        policies: Mapping[str, LinkPolicy],
    ) -> bool:
        """Bring one link in line with the upload; returns whether it was written."""
        policy = policies.get(link.alias)
        if policy is None:
            raise NotFoundError(f"identity provider alias {link.alias} is not assigned to company")
        if not link.user_id:
            raise RowFormatError(f"provider user id for alias {link.alias} must not be empty")
        if current is not None and (current.user_id, current.user_name) == (
            link.user_id,
            link.user_name,
        ):
            return False
        if policy == LinkPolicy.SHARED and (current is None or current.user_id != link.user_id):
            raise ConflictError(
                f"unexpected update of shared identity provider link for alias {link.alias}"
            )

        await self._gateway.upsert_provider_user_link(user_entity_id, link)
        logger.debug("Identity provider link updated", alias=link.alias, user=user_entity_id)
        return True
