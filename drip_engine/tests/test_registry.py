"""Tests for the campaign registry — validation, ordinals, lookups, freezing."""

from datetime import timedelta

import pytest

from drip_engine.errors import ConfigurationError, NotFoundError
from drip_engine.registry import CampaignDefinition, CampaignRegistry, HandlerRegistry
from drip_engine.steps import FixedDelay, ParameterMode, RecurringInterval


def send(subject):
    return None


def other_send(subject):
    return None


@pytest.fixture
def campaign():
    return CampaignDefinition("onboarding", default_handler=send)


class TestRegister:
    def test_returns_step_definition(self, campaign):
        step = campaign.register("welcome", {"delay": timedelta(hours=1)})
        assert step.action_id == "welcome"
        assert step.campaign_id == "onboarding"
        assert step.timing_rule == FixedDelay(timedelta(hours=1))
        assert step.handler_ref is send
        assert step.parameter_mode is ParameterMode.POSITIONAL

    def test_duplicate_action_id_raises(self, campaign):
        campaign.register("welcome", {"delay": timedelta(0)})
        with pytest.raises(ConfigurationError, match="already registered"):
            campaign.register("welcome", {"delay": timedelta(days=1)})

    def test_default_ordinals_follow_registration_order(self, campaign):
        steps = [
            campaign.register(name, {"delay": timedelta(days=i)})
            for i, name in enumerate(["a", "b", "c", "d"])
        ]
        assert [s.ordinal for s in steps] == [1, 2, 3, 4]

    def test_default_ordinal_is_max_plus_one(self, campaign):
        campaign.register("third", {"delay": timedelta(days=3), "step": 3})
        step = campaign.register("next", {"delay": timedelta(days=4)})
        assert step.ordinal == 4

    def test_missing_delay_and_every_raises(self, campaign):
        with pytest.raises(ConfigurationError, match=":delay or :every"):
            campaign.register("welcome", {})

    def test_both_delay_and_every_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="not both"):
            campaign.register("welcome", {"delay": timedelta(0), "every": timedelta(days=1)})

    def test_negative_delay_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="negative"):
            campaign.register("welcome", {"delay": timedelta(hours=-1)})

    def test_non_timedelta_delay_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="timedelta"):
            campaign.register("welcome", {"delay": 3600})

    def test_zero_every_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="greater than zero"):
            campaign.register("digest", {"every": timedelta(0)})

    def test_start_only_with_every(self, campaign):
        with pytest.raises(ConfigurationError, match=":start"):
            campaign.register("welcome", {"delay": timedelta(0), "start": timedelta(hours=1)})

    def test_recurring_rule(self, campaign):
        step = campaign.register("digest", {"every": timedelta(weeks=1), "start": timedelta(days=1)})
        assert step.timing_rule == RecurringInterval(timedelta(weeks=1), timedelta(days=1))
        assert step.recurring

    def test_unknown_option_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="Unknown options"):
            campaign.register("welcome", {"delay": timedelta(0), "mailer_klass": "X"})

    def test_missing_handler_raises(self):
        campaign = CampaignDefinition("no_default")
        with pytest.raises(ConfigurationError, match=":handler"):
            campaign.register("welcome", {"delay": timedelta(0)})

    def test_explicit_handler_overrides_default(self, campaign):
        step = campaign.register("welcome", {"delay": timedelta(0), "handler": other_send})
        assert step.handler_ref is other_send

    def test_explicit_step_taken_raises(self, campaign):
        campaign.register("one", {"delay": timedelta(0), "step": 1})
        with pytest.raises(ConfigurationError, match="already used by 'one'"):
            campaign.register("also_one", {"delay": timedelta(0), "step": 1})

    @pytest.mark.parametrize("bad", [0, -1, "2", 1.5, True])
    def test_explicit_step_must_be_positive_int(self, campaign, bad):
        with pytest.raises(ConfigurationError, match="positive integer"):
            campaign.register("welcome", {"delay": timedelta(0), "step": bad})

    def test_using_parameters(self, campaign):
        step = campaign.register("welcome", {"delay": timedelta(0), "using": "parameters"})
        assert step.parameter_mode is ParameterMode.PARAMETERS

    def test_unknown_using_raises(self, campaign):
        with pytest.raises(ConfigurationError, match="parameter mode"):
            campaign.register("welcome", {"delay": timedelta(0), "using": "kwargs"})

    def test_campaign_default_using(self):
        campaign = CampaignDefinition("params", default_handler=send, using="parameters")
        step = campaign.register("welcome", {"delay": timedelta(0)})
        assert step.parameter_mode is ParameterMode.PARAMETERS

    def test_condition_must_be_callable(self, campaign):
        with pytest.raises(ConfigurationError, match=":condition"):
            campaign.register("welcome", {"delay": timedelta(0), "condition": True})

    def test_options_dict_not_mutated(self, campaign):
        options = {"delay": timedelta(0)}
        campaign.register("welcome", options)
        assert options == {"delay": timedelta(0)}


class TestHandlerResolution:
    def test_resolves_handler_by_name(self):
        handlers = HandlerRegistry({"mail.welcome": send})
        campaign = CampaignDefinition("onboarding", handlers)
        step = campaign.register("welcome", {"delay": timedelta(0), "handler": "mail.welcome"})
        assert step.handler_ref is send

    def test_unknown_handler_name_raises(self):
        campaign = CampaignDefinition("onboarding", HandlerRegistry())
        with pytest.raises(ConfigurationError, match="Unknown handler 'mail.nope'"):
            campaign.register("welcome", {"delay": timedelta(0), "handler": "mail.nope"})

    def test_unknown_default_handler_fails_fast(self):
        with pytest.raises(ConfigurationError, match="Unknown handler"):
            CampaignDefinition("onboarding", HandlerRegistry(), default_handler="missing")

    def test_non_callable_handler_rejected(self):
        handlers = HandlerRegistry()
        with pytest.raises(ConfigurationError, match="not callable"):
            handlers.register("bad", "not a function")

    def test_duplicate_handler_name_rejected(self):
        handlers = HandlerRegistry({"mail": send})
        with pytest.raises(ConfigurationError, match="already registered"):
            handlers.register("mail", other_send)


class TestFreeze:
    def test_frozen_campaign_rejects_registration(self, campaign):
        campaign.register("welcome", {"delay": timedelta(0)})
        campaign.freeze()
        assert campaign.frozen
        with pytest.raises(ConfigurationError, match="frozen"):
            campaign.register("late", {"delay": timedelta(days=1)})

    def test_gap_in_ordinals_rejected(self, campaign):
        campaign.register("one", {"delay": timedelta(0), "step": 1})
        campaign.register("three", {"delay": timedelta(days=3), "step": 3})
        with pytest.raises(ConfigurationError, match=r"numbered 1\.\.2"):
            campaign.freeze()

    def test_out_of_order_explicit_ordinals_accepted(self, campaign):
        campaign.register("second", {"delay": timedelta(days=2), "step": 2})
        campaign.register("first", {"delay": timedelta(0), "step": 1})
        campaign.freeze()
        assert [s.action_id for s in campaign] == ["first", "second"]

    def test_recurring_step_must_be_last(self, campaign):
        campaign.register("digest", {"every": timedelta(weeks=1)})
        campaign.register("after", {"delay": timedelta(days=30)})
        with pytest.raises(ConfigurationError, match="must be the last step"):
            campaign.freeze()

    def test_freeze_is_idempotent(self, campaign):
        campaign.register("welcome", {"delay": timedelta(0)})
        assert campaign.freeze() is campaign.freeze()


class TestLookups:
    @pytest.fixture
    def filled(self, campaign):
        campaign.register("later", {"delay": timedelta(days=5), "step": 2})
        campaign.register("sooner", {"delay": timedelta(0), "step": 1})
        return campaign.freeze()

    def test_for_action_returns_step(self, filled):
        assert filled.for_action("later").ordinal == 2

    def test_for_action_unknown_raises_not_found(self, filled):
        with pytest.raises(NotFoundError, match="No step 'missing'"):
            filled.for_action("missing")

    def test_not_found_is_a_key_error(self, filled):
        with pytest.raises(KeyError):
            filled["missing"]

    def test_get_returns_none(self, filled):
        assert filled.get("missing") is None

    def test_values_in_ordinal_order(self, filled):
        assert [s.action_id for s in filled.values()] == ["sooner", "later"]

    def test_iteration_is_restartable(self, filled):
        first = [s.ordinal for s in filled]
        second = [s.ordinal for s in filled]
        assert first == second == [1, 2]

    def test_items_and_len(self, filled):
        assert [name for name, _ in filled.items()] == ["sooner", "later"]
        assert len(filled) == 2
        assert "later" in filled

    def test_ordinal_bounds(self, filled):
        assert filled.first_ordinal == 1
        assert filled.last_ordinal == 2
        assert filled.at_ordinal(2).action_id == "later"
        assert filled.at_ordinal(3) is None

    def test_empty_campaign_bounds(self):
        empty = CampaignDefinition("empty")
        assert empty.first_ordinal is None
        assert empty.last_ordinal is None
        assert len(empty) == 0


class TestCampaignRegistry:
    def test_register_through_registry(self):
        registry = CampaignRegistry(HandlerRegistry({"mail": send}))
        registry.campaign("onboarding", default_handler="mail")
        step = registry.register("onboarding", "welcome", {"delay": timedelta(0)})
        assert registry.get("onboarding").for_action("welcome") is step

    def test_duplicate_campaign_raises(self):
        registry = CampaignRegistry()
        registry.campaign("onboarding")
        with pytest.raises(ConfigurationError, match="already registered"):
            registry.campaign("onboarding")

    def test_unknown_campaign_raises_not_found(self):
        with pytest.raises(NotFoundError):
            CampaignRegistry().get("nope")

    def test_freeze_freezes_every_campaign(self):
        registry = CampaignRegistry()
        a = registry.campaign("a", default_handler=send)
        a.register("one", {"delay": timedelta(0)})
        b = registry.campaign("b", default_handler=send)
        b.register("one", {"delay": timedelta(0)})

        registry.freeze()
        assert a.frozen and b.frozen
        with pytest.raises(ConfigurationError, match="registry is frozen"):
            registry.campaign("c")

    def test_campaign_ids_keep_insertion_order(self):
        registry = CampaignRegistry()
        for cid in ["z", "a", "m"]:
            registry.campaign(cid)
        assert registry.campaign_ids() == ["z", "a", "m"]
        assert len(registry) == 3
        assert "a" in registry
