"""Campaign catalogue — declarative definitions loaded into a CampaignRegistry."""

from drip_engine.campaigns.digest import CAMPAIGN as digest
from drip_engine.campaigns.nurture import CAMPAIGN as nurture
from drip_engine.campaigns.welcome import CAMPAIGN as welcome
from drip_engine.registry import CampaignRegistry, HandlerRegistry
from drip_engine.services.email_handler import ResendEmailHandler

CAMPAIGNS: dict[str, dict] = {
    welcome["id"]: welcome,
    nurture["id"]: nurture,
    digest["id"]: digest,
}


def get_campaign(campaign_id: str) -> dict | None:
    """Get a campaign definition by ID."""
    return CAMPAIGNS.get(campaign_id)


def build_registry(handlers: HandlerRegistry | None = None,
                   definitions: dict[str, dict] | None = None) -> CampaignRegistry:
    """Register every definition and freeze the result.

    A definition with an "emails" block and no "default_handler" gets a
    ResendEmailHandler registered as "email:<campaign id>".
    """
    registry = CampaignRegistry(handlers)
    for campaign_id, definition in (CAMPAIGNS if definitions is None else definitions).items():
        default_handler = definition.get("default_handler")
        if default_handler is None and definition.get("emails"):
            default_handler = f"email:{campaign_id}"
            registry.handlers.register(default_handler, ResendEmailHandler(definition["emails"]))

        campaign = registry.campaign(campaign_id, default_handler=default_handler, using=definition.get("using"))
        for action_id, options in definition["steps"]:
            campaign.register(action_id, options)
    return registry.freeze()
