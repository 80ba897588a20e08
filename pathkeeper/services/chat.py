"""Campaign chat: messages, system notices and dice rolls."""

from dataclasses import dataclass

from sqlalchemy.orm import Session

from ..core.errors import DomainError, DomainException, GeneralErrors
from ..core.result import Result
from ..database.models import Campaign, CampaignChatMessage, ChatMessageType
from ..game.dice import DiceRoller
from .mediator import Command, Query

MAX_MESSAGE_LENGTH = 2000

_roller = DiceRoller()


def _member_campaign(db: Session, campaign_id: int, user_id: int | None) -> Campaign:
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise DomainException(DomainError("CAMPAIGN.NOT_FOUND", f"Campaign {campaign_id} was not found"))
    if not campaign.is_user_member(user_id):
        raise DomainException(GeneralErrors.access_denied("You are not a member of this campaign"))
    return campaign


def _sender_name(campaign: Campaign, user_id: int) -> str:
    member = campaign.get_member(user_id)
    if member is not None:
        return member.alias
    return "DM" if campaign.is_user_dm(user_id) else f"User {user_id}"


@dataclass
class SendChatMessage(Command):
    campaign_id: int = 0
    content: str = ""
    message_type: str = ChatMessageType.GENERAL.name
    character_id: int | None = None

    def validate(self) -> list[str]:
        errors = []
        if not (self.content or "").strip():
            errors.append("Message content is required")
        elif len(self.content) > MAX_MESSAGE_LENGTH:
            errors.append(f"Message must be {MAX_MESSAGE_LENGTH} characters or less")
        if self.message_type not in ChatMessageType.__members__:
            errors.append(f"Unknown message type '{self.message_type}'")
        elif self.message_type in ("SYSTEM", "DICE_ROLL"):
            errors.append(f"Message type '{self.message_type}' cannot be sent directly")
        return errors


@dataclass
class SendSystemMessage(Command):
    campaign_id: int = 0
    content: str = ""

    def validate(self) -> list[str]:
        return [] if (self.content or "").strip() else ["Message content is required"]


@dataclass
class RollDice(Command):
    campaign_id: int = 0
    notation: str = "1d20"
    reason: str | None = None
    is_private: bool = False
    character_id: int | None = None

    def validate(self) -> list[str]:
        try:
            _roller.parse_notation(self.notation)
        except ValueError as e:
            return [str(e)]
        return []


@dataclass
class GetChatHistory(Query):
    campaign_id: int = 0
    limit: int = 50
    before_id: int | None = None


def send_chat_message(db: Session, request: SendChatMessage, current_user_id: int | None) -> Result:
    campaign = _member_campaign(db, request.campaign_id, current_user_id)
    message_type = ChatMessageType[request.message_type]
    if message_type == ChatMessageType.DM_ONLY and not campaign.is_user_dm(current_user_id):
        return Result.failure(GeneralErrors.access_denied("Only the DM can send DM-only messages"))

    message = CampaignChatMessage(
        campaign_id=campaign.id,
        user_id=current_user_id,
        character_id=request.character_id,
        sender_name=_sender_name(campaign, current_user_id),
        message_type=message_type,
        content=request.content.strip(),
        message_data={},
    )
    db.add(message)
    campaign.update_activity()
    db.flush()
    return Result.success(message.to_dict())


def send_system_message(db: Session, request: SendSystemMessage, current_user_id: int | None) -> Result:
    campaign = _member_campaign(db, request.campaign_id, current_user_id)
    if not campaign.is_user_dm(current_user_id):
        return Result.failure(GeneralErrors.access_denied("Only the DM can send system messages"))
    message = CampaignChatMessage.create_system_message(campaign.id, request.content.strip())
    db.add(message)
    db.flush()
    return Result.success(message.to_dict())


def roll_dice(db: Session, request: RollDice, current_user_id: int | None) -> Result:
    """Roll dice and post the result; private rolls are seen only by the roller and DM."""
    campaign = _member_campaign(db, request.campaign_id, current_user_id)
    result = _roller.roll(request.notation)
    sender = _sender_name(campaign, current_user_id)

    content = f"{sender} rolled {result}"
    if request.reason:
        content += f" for {request.reason}"

    message = CampaignChatMessage.create_dice_roll(
        campaign.id,
        current_user_id,
        sender,
        content,
        result.to_dict(),
        is_private=request.is_private,
        character_id=request.character_id,
    )
    db.add(message)
    campaign.update_activity()
    db.flush()
    return Result.success(message.to_dict())


def get_chat_history(db: Session, request: GetChatHistory, current_user_id: int | None) -> Result:
    """Most recent visible messages, oldest first."""
    campaign = _member_campaign(db, request.campaign_id, current_user_id)
    is_dm = campaign.is_user_dm(current_user_id)

    query = db.query(CampaignChatMessage).filter_by(campaign_id=campaign.id)
    if request.before_id is not None:
        query = query.filter(CampaignChatMessage.id < request.before_id)
    messages = query.order_by(CampaignChatMessage.id.desc()).limit(max(1, min(request.limit, 200))).all()

    visible = [m.to_dict() for m in reversed(messages) if m.is_visible_to(current_user_id, is_dm)]
    return Result.success(visible)


HANDLERS = {
    SendChatMessage: send_chat_message,
    SendSystemMessage: send_system_message,
    RollDice: roll_dice,
    GetChatHistory: get_chat_history,
}
