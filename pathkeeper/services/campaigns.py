"""Campaign commands and queries, including join links."""

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.orm import Session

from ..config import get_config
from ..core.errors import AuthorizationErrors, DomainError, GeneralErrors, UserErrors
from ..core.result import Result
from ..database.models import Campaign, CampaignChatMessage, User
from ..rules.variants import RuleModuleRegistry
from .mediator import Command, Query

logger = logging.getLogger(__name__)

CAMPAIGN_NOT_FOUND = "CAMPAIGN.NOT_FOUND"


def _campaign_not_found(campaign_id: int) -> DomainError:
    return DomainError(CAMPAIGN_NOT_FOUND, f"Campaign {campaign_id} was not found")


@dataclass
class CreateCampaign(Command):
    name: str = ""
    description: str | None = None
    variant_rules: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> list[str]:
        errors = []
        if not (self.name or "").strip():
            errors.append("Campaign name is required")
        elif len(self.name) > 100:
            errors.append("Campaign name must be 100 characters or less")
        for key in RuleModuleRegistry.unknown_variant_rules(self.variant_rules):
            errors.append(f"Unknown variant rule '{key}'")
        return errors


@dataclass
class GetCampaign(Query):
    campaign_id: int = 0


@dataclass
class ListMyCampaigns(Query):
    pass


@dataclass
class JoinCampaign(Command):
    token: str = ""
    alias: str = ""


@dataclass
class RegenerateJoinToken(Command):
    campaign_id: int = 0


@dataclass
class UpdateVariantRules(Command):
    campaign_id: int = 0
    variant_rules: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> list[str]:
        return [f"Unknown variant rule '{key}'" for key in RuleModuleRegistry.unknown_variant_rules(self.variant_rules)]


def create_campaign(db: Session, request: CreateCampaign, current_user_id: int | None) -> Result:
    if db.get(User, current_user_id) is None:
        return Result.failure(UserErrors.not_found(current_user_id))

    campaign = Campaign.create(
        dm_user_id=current_user_id,
        name=request.name.strip(),
        description=request.description,
        variant_rules=request.variant_rules,
    )
    db.add(campaign)
    db.flush()
    logger.info(f"Created campaign {campaign.id} '{campaign.name}'")
    return Result.success(campaign.to_dict(include_token=True))


def get_campaign(db: Session, request: GetCampaign, current_user_id: int | None) -> Result:
    campaign = db.get(Campaign, request.campaign_id)
    if campaign is None:
        return Result.failure(_campaign_not_found(request.campaign_id))
    if not campaign.is_user_member(current_user_id):
        return Result.failure(GeneralErrors.access_denied("You are not a member of this campaign"))
    return Result.success(campaign.to_dict(include_token=campaign.is_user_dm(current_user_id)))


def list_my_campaigns(db: Session, request: ListMyCampaigns, current_user_id: int | None) -> Result:
    campaigns = db.query(Campaign).order_by(Campaign.last_activity_at.desc()).all()
    return Result.success([c.to_dict() for c in campaigns if c.is_user_member(current_user_id)])


def join_campaign(db: Session, request: JoinCampaign, current_user_id: int | None) -> Result:
    """Join a campaign through its join link, under an alias unique in the campaign."""
    campaign = db.query(Campaign).filter_by(join_token=(request.token or "").strip()).first()
    if campaign is None:
        return Result.failure("Invalid or expired join link")
    if not campaign.is_active:
        return Result.failure("This campaign is no longer active")
    if campaign.is_user_member(current_user_id):
        return Result.failure("You are already a member of this campaign")

    alias = (request.alias or "").strip()
    max_length = get_config().campaign.alias_max_length
    if not alias:
        return Result.failure(GeneralErrors.validation_failed(["Alias is required"]))
    if len(alias) > max_length:
        return Result.failure(GeneralErrors.validation_failed([f"Alias must be {max_length} characters or less"]))
    if campaign.alias_taken(alias):
        return Result.failure("This alias is already taken in this campaign")

    member = campaign.add_member(current_user_id, alias)
    db.add(CampaignChatMessage.create_system_message(campaign.id, f"{alias} joined the campaign"))
    db.flush()
    logger.info(f"User {current_user_id} joined campaign {campaign.id} as '{alias}'")
    return Result.success({"campaign": campaign.to_dict(), "member": member.to_dict()})


def regenerate_join_token(db: Session, request: RegenerateJoinToken, current_user_id: int | None) -> Result:
    campaign = db.get(Campaign, request.campaign_id)
    if campaign is None:
        return Result.failure(_campaign_not_found(request.campaign_id))
    if not campaign.is_user_dm(current_user_id):
        return Result.failure(AuthorizationErrors.forbidden("Only the DM can regenerate the join link"))
    token = campaign.regenerate_join_token()
    return Result.success({"campaign_id": campaign.id, "join_token": token})


def update_variant_rules(db: Session, request: UpdateVariantRules, current_user_id: int | None) -> Result:
    campaign = db.get(Campaign, request.campaign_id)
    if campaign is None:
        return Result.failure(_campaign_not_found(request.campaign_id))
    if not campaign.is_user_dm(current_user_id):
        return Result.failure(AuthorizationErrors.forbidden("Only the DM can change variant rules"))
    campaign.variant_rules = dict(request.variant_rules)
    campaign.update_activity()
    return Result.success(campaign.to_dict(include_token=True))


HANDLERS = {
    CreateCampaign: create_campaign,
    GetCampaign: get_campaign,
    ListMyCampaigns: list_my_campaigns,
    JoinCampaign: join_campaign,
    RegenerateJoinToken: regenerate_join_token,
    UpdateVariantRules: update_variant_rules,
}
