from __future__ import annotations

import logging
from functools import lru_cache
from typing import Optional

from .api.channels import AutomatedMessenger, ChannelsApi
from .api.contacts import ContactsApi
from .api.messages import MessagesApi
from .api.presence import PresenceApi
from .api.rules import RulesApi
from .auth import build_auth
from .bus.client import EventBusClient
from .bus.transport import SseTransport, Transport
from .config import EngineConfig, load_engine_config
from .http import HttpClient, HttpClientConfig
from .notifications import Notifier
from .observability import Observability
from .presence.assignment import AssignmentPrompter
from .presence.tracker import PresenceTracker
from .rules.actions import ActionExecutor
from .rules.engine import RuleEngine
from .session import InboxSession
from .store.conversation_store import ConversationStore
from .store.preferences import AssignPromptPreferences


@lru_cache(maxsize=1)
def get_engine_container() -> "EngineContainer":
    return EngineContainer.build()


class EngineContainer:
    def __init__(self, *, config: EngineConfig, obs: Observability, session: InboxSession):
        self.config = config
        self.obs = obs
        self.session = session

    @property
    def store(self) -> ConversationStore:
        return self.session.store

    @property
    def notifier(self) -> Notifier:
        return self.session.notifier

    @staticmethod
    def build(config: Optional[EngineConfig] = None, *, transport: Optional[Transport] = None) -> "EngineContainer":
        cfg = config or load_engine_config()
        logger = logging.getLogger("inbox_engine")
        obs = Observability(logger)

        auth = build_auth(cfg.api_token)
        client = HttpClient(
            config=HttpClientConfig(base_url=cfg.api_base_url, timeout_s=cfg.request_timeout_s),
            auth=auth,
            collaborator="inbox_api",
        )
        messages_api = MessagesApi(client, org_id=cfg.org_id, obs=obs)
        contacts_api = ContactsApi(client, org_id=cfg.org_id)
        channels_api = ChannelsApi(client)
        rules_api = RulesApi(client, org_id=cfg.org_id, obs=obs)
        presence_api = PresenceApi(client, org_id=cfg.org_id, operator_id=cfg.operator_id)

        notifier = Notifier(obs=obs, max_items=cfg.notifications_max)
        store = ConversationStore(obs=obs, messages_api=messages_api, page_size=cfg.page_size)
        executor = ActionExecutor(
            store=store,
            assignment=contacts_api,
            tagging=contacts_api,
            messaging=AutomatedMessenger(channels_api, messages_api, obs=obs),
            handoff=contacts_api,
            obs=obs,
        )
        rules = RuleEngine(
            executor=executor,
            obs=obs,
            rules_api=rules_api,
            notifier=notifier,
            timezone=cfg.timezone,
        )
        presence = PresenceTracker(
            operator_id=cfg.operator_id,
            publisher=presence_api,
            obs=obs,
            typing_idle_s=cfg.typing_idle_s,
            tick_s=cfg.presence_tick_s,
            ttl_s=cfg.presence_ttl_s,
        )
        prompter = AssignmentPrompter(
            AssignPromptPreferences(cfg.preferences_path),
            every=cfg.assign_prompt_every,
        )
        bus = EventBusClient(
            transport=transport or SseTransport(base_url=cfg.api_base_url, path=cfg.events_path, auth=auth),
            obs=obs,
            policy=cfg.reconnect,
        )

        session = InboxSession(
            org_id=cfg.org_id,
            operator_id=cfg.operator_id,
            store=store,
            bus=bus,
            rules=rules,
            presence=presence,
            prompter=prompter,
            notifier=notifier,
            messages_api=messages_api,
            contacts_api=contacts_api,
            channels_api=channels_api,
            obs=obs,
        )
        return EngineContainer(config=cfg, obs=obs, session=session)
