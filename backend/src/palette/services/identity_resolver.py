"""
Identity Resolver Module

Maps a provider-verified identity plus the caller's intent (login, signup or
link) onto exactly one outcome: ``Authenticated``, ``NeedsEmail`` or
``Conflict``.

The work is split in two:

- ``decide_resolution`` is a pure, total function over the assertion, the
  intent and the accounts already found in the store. It performs no I/O.
- ``IdentityResolver`` looks those accounts up, carries out the decision and
  maps unique-index violations from concurrent requests back onto the
  outcome the losing request would have reached had it run second.

The lookups are an optimization; the unique indexes on account email and on
(provider, external_id) are what actually keep two requests from creating
the same identity twice.
"""

from datetime import UTC, datetime
from typing import assert_never

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.models import Account
from ..core.exceptions import DatabaseConstraintError, TokenMissingError, ValidationError
from ..core.logging import get_logger, redact_email
from ..models.social_binding import SocialBinding
from .account_service import AccountService, get_account_service
from .identity_types import (
    AskForEmail,
    AttachBinding,
    Authenticated,
    Conflict,
    ConflictReason,
    CreateAccount,
    Decision,
    IdentityAssertion,
    Intent,
    NeedsEmail,
    PendingLinkProfile,
    Reject,
    ResolutionOutcome,
    UseExisting,
)

logger = get_logger(__name__)


def decide_resolution(
    assertion: IdentityAssertion,
    intent: Intent,
    by_binding: Account | None,
    by_email: Account | None,
    current_account: Account | None,
) -> Decision:
    """Decide what a social identity request should do.

    Args:
        assertion: normalized provider assertion.
        intent: what the caller declared.
        by_binding: account already bound to (provider, external_id), if any.
        by_email: account owning the assertion's email, if any. Ignored when
            ``by_binding`` is set.
        current_account: the signed-in caller. Required for ``Intent.LINK``.

    """
    if intent is Intent.LINK and current_account is None:
        raise ValueError("link resolution requires the signed-in account")

    # 1. A known (provider, external_id) short-circuits every email comparison
    if by_binding is not None:
        if intent is Intent.LOGIN or intent is Intent.SIGNUP:
            return UseExisting(by_binding)
        elif intent is Intent.LINK:
            if by_binding.id == current_account.id:
                return UseExisting(by_binding)
            return Reject(ConflictReason.SOCIAL_ALREADY_LINKED_ELSEWHERE)
        else:
            assert_never(intent)

    # 2. Unknown identity and the provider shared no email
    if not assertion.email:
        pending = PendingLinkProfile.from_assertion(assertion)
        if intent is Intent.LOGIN:
            return Reject(ConflictReason.ACCOUNT_NOT_FOUND_NO_EMAIL, pending)
        elif intent is Intent.SIGNUP:
            return AskForEmail(pending)
        elif intent is Intent.LINK:
            return Reject(ConflictReason.ACCOUNT_NOT_FOUND_NO_EMAIL, pending)
        else:
            assert_never(intent)

    # 3a. Unknown identity, unknown email
    if by_email is None:
        if intent is Intent.LOGIN:
            return Reject(ConflictReason.ACCOUNT_NOT_FOUND)
        elif intent is Intent.SIGNUP:
            return CreateAccount()
        elif intent is Intent.LINK:
            if current_account.binding_for(assertion.provider) is not None:
                return Reject(ConflictReason.PROVIDER_ALREADY_LINKED)
            return AttachBinding(current_account)
        else:
            assert_never(intent)

    # 3b. Unknown identity, email owned by an existing account
    if intent is Intent.SIGNUP:
        return Reject(ConflictReason.EMAIL_ALREADY_EXISTS)
    elif intent is Intent.LINK:
        if by_email.id != current_account.id:
            return Reject(ConflictReason.EMAIL_ALREADY_EXISTS)
        if current_account.binding_for(assertion.provider) is not None:
            return Reject(ConflictReason.PROVIDER_ALREADY_LINKED)
        return AttachBinding(current_account)
    elif intent is Intent.LOGIN:
        # Never auto-attach to a password account from a bare login, and never
        # replace an identity the account already holds at this provider
        if by_email.has_password or by_email.binding_for(assertion.provider) is not None:
            return Reject(ConflictReason.EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK)
        # Same human only when both sides proved the email: the owner verified it
        # and the provider did not disclaim it
        if not by_email.email_verified or assertion.email_verified_by_provider is False:
            return Reject(ConflictReason.EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK)
        return AttachBinding(by_email)
    else:
        assert_never(intent)


class IdentityResolver:
    """Executes resolution decisions against the account store."""

    def __init__(self, db: AsyncSession, account_service: AccountService | None = None):
        self.db = db
        self.account_service = account_service or get_account_service()

    async def _get_account_by_binding(self, provider: str, external_id: str) -> Account | None:
        stmt = (
            select(Account)
            .join(SocialBinding, SocialBinding.account_id == Account.id)
            .where(SocialBinding.provider == provider, SocialBinding.external_id == external_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_account_by_id(self, account_id: str) -> Account | None:
        result = await self.db.execute(
            select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def resolve(
        self,
        assertion: IdentityAssertion,
        intent: Intent,
        current_account: Account | None = None,
    ) -> ResolutionOutcome:
        """Resolve a verified assertion into an outcome."""
        if intent is Intent.LINK and current_account is None:
            raise TokenMissingError()

        assertion = assertion.normalized()
        by_binding = await self._get_account_by_binding(assertion.provider, assertion.external_id)
        by_email = None
        if by_binding is None and assertion.email:
            by_email = await self.account_service.get_account_by_email(assertion.email, self.db)

        decision = decide_resolution(assertion, intent, by_binding, by_email, current_account)
        outcome = await self._execute(decision, assertion, intent, current_account)
        self._log_outcome(assertion, intent, outcome)
        return outcome

    async def complete_signup(
        self,
        provider: str,
        external_id: str,
        email: str,
        display_name: str | None = None,
        avatar_url: str | None = None,
    ) -> ResolutionOutcome:
        """Finish a signup that was parked for lack of an email.

        Re-enters resolution with ``Intent.SIGNUP``. A second call for the
        same (provider, external_id) returns the account the first created.
        The typed email is unproven, so the account starts unverified and a
        verification link is sent.
        """
        if not external_id:
            raise ValidationError("externalId is required", details={"field": "externalId"})
        email = (email or "").strip().lower()
        if not email or "@" not in email:
            raise ValidationError("A valid email address is required", details={"field": "email"})

        assertion = IdentityAssertion(
            provider=provider,
            external_id=external_id,
            email=email,
            display_name=display_name,
            avatar_url=avatar_url,
            email_verified_by_provider=False,
        )
        return await self.resolve(assertion, Intent.SIGNUP)

    async def _execute(
        self,
        decision: Decision,
        assertion: IdentityAssertion,
        intent: Intent,
        current_account: Account | None,
    ) -> ResolutionOutcome:
        if isinstance(decision, UseExisting):
            return await self._sign_in_existing(decision.account, assertion)
        elif isinstance(decision, CreateAccount):
            return await self._create_account(assertion, intent, current_account)
        elif isinstance(decision, AttachBinding):
            return await self._attach_binding(decision.account, assertion, intent, current_account)
        elif isinstance(decision, AskForEmail):
            return NeedsEmail(decision.pending_profile)
        elif isinstance(decision, Reject):
            return self._conflict(decision.reason, assertion, decision.pending_profile)
        else:
            assert_never(decision)

    def _conflict(
        self,
        reason: ConflictReason,
        assertion: IdentityAssertion,
        pending_profile: PendingLinkProfile | None = None,
    ) -> Conflict:
        return Conflict(reason=reason, details=assertion.public_fields(), pending_profile=pending_profile)

    def _new_binding(self, assertion: IdentityAssertion) -> SocialBinding:
        return SocialBinding(
            provider=assertion.provider,
            external_id=assertion.external_id,
            provider_email=assertion.email,
            provider_email_verified=assertion.email_verified_by_provider,
            display_name=assertion.display_name,
            avatar_url=assertion.avatar_url,
        )

    def _refresh_binding_details(self, binding: SocialBinding, assertion: IdentityAssertion) -> None:
        """Keep what the provider last reported; empty values never overwrite."""
        if assertion.email and assertion.email != binding.provider_email:
            binding.provider_email = assertion.email
        if (
            assertion.email_verified_by_provider is not None
            and assertion.email_verified_by_provider != binding.provider_email_verified
        ):
            binding.provider_email_verified = assertion.email_verified_by_provider
        if assertion.display_name and assertion.display_name != binding.display_name:
            binding.display_name = assertion.display_name
        if assertion.avatar_url and assertion.avatar_url != binding.avatar_url:
            binding.avatar_url = assertion.avatar_url

    def _mark_email_verified(self, account: Account, assertion: IdentityAssertion) -> None:
        """A provider vouching for the account's own email verifies it."""
        if (
            assertion.email
            and account.email == assertion.email
            and assertion.email_verified_by_provider is not False
            and not account.email_verified
        ):
            account.email_verified = True
            account.email_verification_token_hash = None
            account.email_verification_expires_at = None

    async def _sign_in_existing(self, account: Account, assertion: IdentityAssertion) -> Authenticated:
        binding = account.binding_for(assertion.provider)
        if binding is not None and binding.external_id == assertion.external_id:
            self._refresh_binding_details(binding, assertion)
        account.last_login = datetime.now(UTC)
        await self.db.commit()
        return Authenticated(account=account, is_new_account=False)

    async def _create_account(
        self,
        assertion: IdentityAssertion,
        intent: Intent,
        current_account: Account | None,
    ) -> ResolutionOutcome:
        account = Account(
            email=assertion.email,
            nickname=await self.account_service.allocate_nickname(
                self.db, assertion.display_name, assertion.email
            ),
            avatar_url=assertion.avatar_url,
            role=self.account_service.role_for_email(assertion.email).value,
            # The provider required the email to issue the token; silence means verified
            email_verified=(
                True if assertion.email_verified_by_provider is None else assertion.email_verified_by_provider
            ),
            last_login=datetime.now(UTC),
        )
        account.bindings.append(self._new_binding(assertion))
        # An email nobody vouched for has to be confirmed by its owner
        raw_token = None if account.email_verified else self.account_service.issue_verification_token(account)
        self.db.add(account)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            return await self._recover_from_race(e, assertion, intent, current_account_id=None)

        logger.info(
            "Account created from social identity",
            extra={
                "account_id": account.id,
                "provider": assertion.provider,
                "email": redact_email(assertion.email),
            },
        )
        if raw_token is not None:
            await self.account_service.send_verification_email(account.email, raw_token)
        return Authenticated(account=account, is_new_account=True)

    async def _attach_binding(
        self,
        account: Account,
        assertion: IdentityAssertion,
        intent: Intent,
        current_account: Account | None,
    ) -> ResolutionOutcome:
        account_id = account.id
        current_account_id = current_account.id if current_account is not None else None

        account.bindings.append(self._new_binding(assertion))
        self._mark_email_verified(account, assertion)
        account.last_login = datetime.now(UTC)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            return await self._recover_from_race(
                e, assertion, intent, current_account_id=current_account_id, target_account_id=account_id
            )

        logger.info(
            "Social binding attached",
            extra={"account_id": account_id, "provider": assertion.provider},
        )
        return Authenticated(account=account, is_new_account=False)

    async def _recover_from_race(
        self,
        error: IntegrityError,
        assertion: IdentityAssertion,
        intent: Intent,
        current_account_id: str | None,
        target_account_id: str | None = None,
    ) -> ResolutionOutcome:
        """Re-read the store after a unique-index violation and map it to an outcome."""
        logger.info(
            "Concurrent identity write detected, re-reading store",
            extra={"provider": assertion.provider, "intent": intent.value},
        )

        winner = await self._get_account_by_binding(assertion.provider, assertion.external_id)
        if winner is not None:
            if intent is Intent.LINK and winner.id != current_account_id:
                return self._conflict(ConflictReason.SOCIAL_ALREADY_LINKED_ELSEWHERE, assertion)
            return await self._sign_in_existing(winner, assertion)

        if target_account_id is not None:
            target = await self._get_account_by_id(target_account_id)
            if target is not None and target.binding_for(assertion.provider) is not None:
                if intent is Intent.LINK:
                    return self._conflict(ConflictReason.PROVIDER_ALREADY_LINKED, assertion)
                return self._conflict(ConflictReason.EMAIL_ACCOUNT_EXISTS_NEEDS_MANUAL_LINK, assertion)

        if assertion.email and target_account_id is None:
            if await self.account_service.get_account_by_email(assertion.email, self.db) is not None:
                return self._conflict(ConflictReason.EMAIL_ALREADY_EXISTS, assertion)

        logger.error(
            "Unexplained constraint violation during identity resolution",
            extra={"provider": assertion.provider, "intent": intent.value},
        )
        raise DatabaseConstraintError("identity resolution", details={"provider": assertion.provider}) from error

    def _log_outcome(self, assertion: IdentityAssertion, intent: Intent, outcome: ResolutionOutcome) -> None:
        extra = {
            "provider": assertion.provider,
            "intent": intent.value,
            "outcome": type(outcome).__name__,
        }
        if isinstance(outcome, Authenticated):
            extra["account_id"] = outcome.account.id
            extra["is_new_account"] = outcome.is_new_account
        elif isinstance(outcome, Conflict):
            extra["reason"] = outcome.reason.value
            extra["email"] = redact_email(assertion.email)
        logger.info("Identity resolved", extra=extra)
