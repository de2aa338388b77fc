import logging
from dataclasses import dataclass
from typing import Optional

from pymongo import AsyncMongoClient

from eventagg_kit.ekit_config import ConfigError, EventAggConfig
from eventagg_kit.ekit_event_sync import EventSyncer
from eventagg_kit.ekit_images import MongoImageStorage
from eventagg_kit.ekit_mail import AlertMailer
from eventagg_kit.ekit_mongo import EventStore, PageRegistry
from eventagg_kit.ekit_oauth import OAuthCallbackHandler
from eventagg_kit.ekit_token_health import TokenHealthReporter
from eventagg_kit.ekit_token_refresh import TokenRefresher
from eventagg_kit.ekit_vault import VaultTokenStore
from eventagg_kit.ekit_webhooks import WebhookProcessor
from eventagg_kit.integrations.facebook import FacebookGraphClient


logger = logging.getLogger("services")


@dataclass
class EventAggServices:
    config: EventAggConfig
    registry: PageRegistry
    events: EventStore
    token_store: VaultTokenStore
    facebook: FacebookGraphClient
    images: MongoImageStorage
    mailer: AlertMailer
    reporter: TokenHealthReporter
    refresher: TokenRefresher
    syncer: EventSyncer
    webhooks: WebhookProcessor
    oauth: OAuthCallbackHandler
    mongo_client: Optional[AsyncMongoClient] = None

    async def ensure_indexes(self) -> None:
        await self.registry.ensure_indexes()
        await self.events.ensure_indexes()

    async def close(self) -> None:
        if self.mongo_client is not None:
            await self.mongo_client.close()
            self.mongo_client = None


def build_services(config: EventAggConfig) -> EventAggServices:
    if not config.vault_endpoint or not config.vault_token:
        raise ConfigError("VAULT_ENDPOINT and a vault token are required to read page tokens")
    mongo_client = AsyncMongoClient(config.mongodb_url, tz_aware=True)
    db = mongo_client[config.mongodb_db]
    timeout = config.external_call_timeout

    registry = PageRegistry.from_db(db)
    events = EventStore.from_db(db)
    token_store = VaultTokenStore(config.vault_endpoint, config.vault_token)
    facebook = FacebookGraphClient()
    images = MongoImageStorage(db, config.media_public_url)
    mailer = AlertMailer(config.resend_api_key, config.alert_email_from, config.alert_email_to, config.web_app_url)
    syncer = EventSyncer(
        registry, token_store, facebook, events,
        images=images, images_bucket=config.images_bucket, call_timeout=timeout,
    )
    services = EventAggServices(
        config=config,
        registry=registry,
        events=events,
        token_store=token_store,
        facebook=facebook,
        images=images,
        mailer=mailer,
        reporter=TokenHealthReporter(registry, call_timeout=timeout),
        refresher=TokenRefresher(registry, token_store, facebook, alerts=mailer, call_timeout=timeout),
        syncer=syncer,
        webhooks=WebhookProcessor(syncer, events),
        oauth=OAuthCallbackHandler(
            registry, token_store, facebook, syncer,
            callback_url=config.oauth_callback_url or "",
            web_app_url=config.web_app_url,
            call_timeout=timeout,
        ),
        mongo_client=mongo_client,
    )
    logger.info("services ready, mongo db %s, vault %s", config.mongodb_db, config.vault_endpoint)
    return services
