"""Process-wide collaborators shared by request handlers and the stats loop."""

import logging
from dataclasses import dataclass, field

from jinja2 import Template

from membersync.config.settings import AppConfig
from membersync.members.reconciler import EmailLocks
from membersync.members.store import MembershipStore
from membersync.notifications.mailer import Mailer, load_template
from membersync.payments.billing import configure_stripe
from membersync.stats.aggregator import StatsHolder, load_snapshot

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a handler needs; built once before the server accepts traffic."""

    config: AppConfig
    store: MembershipStore
    mailer: Mailer
    template: Template
    stats: StatsHolder = field(default_factory=StatsHolder)
    locks: EmailLocks = field(default_factory=EmailLocks)


def build_context(config: AppConfig) -> AppContext:
    """Wire collaborators from config.

    Raises:
        OSError: If the portal template cannot be found or read
        jinja2.TemplateError: If the portal template is invalid
    """
    configure_stripe(config)
    template = load_template(config.portal_template_path)

    persisted = load_snapshot(config.stats_file)
    if persisted is not None:
        logger.info(f"Loaded persisted stats from {config.stats_file}")

    return AppContext(
        config=config,
        store=MembershipStore.from_config(config),
        mailer=Mailer.from_config(config),
        template=template,
        stats=StatsHolder(persisted),
    )
