import argparse
import asyncio
import logging
import platform
import signal
import sys

from sniper_bot import config
from sniper_bot.config import PolicyManager, SniperPolicy
from sniper_bot.core.engine import SniperEngine
from sniper_bot.core.gateways import PaperExecutionGateway
from sniper_bot.core.ledger import JsonlAuditStore
from sniper_bot.core.log_feed import LogsFeed
from sniper_bot.core.pool_enricher import DexScreenerEnricher
from sniper_bot.core.notifications import Notification, NotificationBus, NotificationType
from sniper_bot.core.price_oracle import JupiterPriceOracle
from sniper_bot.core.telegram_notifier import TelegramNotifier
from sniper_bot.core.trade_feed import PumpPortalTradeFeed
from sniper_bot.core.venues import VenueGrammar, VenueRegistry, load_venues
from sniper_bot.exceptions import ConfigurationException, SniperException
from sniper_bot.logger import setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="New-pool sniper with exit management and sniper protection")
    parser.add_argument("--policy", default=config.SNIPER_POLICY_PATH, help="Policy file (YAML or JSON)")
    parser.add_argument("--preset", default=config.SNIPER_PRESET, help="Preset: aggressive or conservative")
    parser.add_argument("--venues", default=config.SNIPER_VENUES_PATH, help="Venue grammar file")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--paper", dest="paper", action="store_true", help="Simulated fills (default from PAPER_TRADING_MODE)")
    mode.add_argument("--live", dest="paper", action="store_false", help="Live execution")
    parser.set_defaults(paper=config.PAPER_TRADING_MODE)
    parser.add_argument("--log-level", default=config.LOG_LEVEL, help="DEBUG, INFO, WARNING, ERROR")
    return parser.parse_args(argv)


def target_venues(registry: VenueRegistry, policy: SniperPolicy) -> list[VenueGrammar]:
    """Venues that can produce at least one of the targeted pool types."""
    targets = set(policy.targeting.target_pools)
    return [v for v in registry if any(q.pool_type in targets for q in v.quotes)]


def route_trades(feed: PumpPortalTradeFeed):
    """Bus listener keeping the trade stream subscribed to open snipes only."""

    async def listener(notification: Notification):
        if notification.type == NotificationType.SNIPE_EXECUTED:
            await feed.subscribe(notification.asset_id)
        elif notification.type == NotificationType.AUTO_SELL_EXECUTED and notification.data.get("closed"):
            await feed.unsubscribe(notification.asset_id)

    return listener


async def run(args: argparse.Namespace):
    policy = PolicyManager(args.policy).load(args.preset)
    registry = load_venues(args.venues)

    if not args.paper:
        raise ConfigurationException("Live execution requires an external execution gateway", mode="live")
    if not config.WSS_URL:
        raise ConfigurationException("WSS_URL (or RPC_URL) must be set")

    venues = target_venues(registry, policy)
    if not venues:
        raise ConfigurationException("No venue matches the target pools", pools=list(policy.targeting.target_pools))

    oracle = JupiterPriceOracle(config.JUPITER_PRICE_API, timeout_sec=config.API_TIMEOUT_SEC)
    enricher = DexScreenerEnricher(config.DEXSCREENER_API_BASE, timeout_sec=config.API_TIMEOUT_SEC, max_attempts=2, retry_delay_sec=0.5)
    telegram = TelegramNotifier(config.TG_TOKEN, config.TG_CHAT_ID, timeout_sec=config.API_TIMEOUT_SEC)
    bus = NotificationBus()
    bus.add_listener(telegram.handle)

    engine = SniperEngine(
        policy,
        PaperExecutionGateway(oracle),
        oracle,
        registry=registry,
        enricher=enricher,
        bus=bus,
        audit_store=JsonlAuditStore(config.AUDIT_PATH),
        snapshot_path=config.SNAPSHOT_PATH,
    )
    trade_feed = PumpPortalTradeFeed(engine.observe_trade)
    bus.add_listener(route_trades(trade_feed), {NotificationType.SNIPE_EXECUTED, NotificationType.AUTO_SELL_EXECUTED})

    queue: asyncio.Queue = asyncio.Queue(maxsize=1000)
    logs_feed = LogsFeed(config.WSS_URL, venues, queue)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    # add_signal_handler is not available on Windows; Ctrl+C raises KeyboardInterrupt there
    if platform.system() != "Windows":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(
        f"🚀 Sniper starting ({'PAPER' if args.paper else 'LIVE'}) on "
        f"{', '.join(v.name for v in venues)}"
    )
    await engine.start()
    tasks = [
        asyncio.create_task(logs_feed.run(), name="logs_feed"),
        asyncio.create_task(trade_feed.run(), name="trade_feed"),
        asyncio.create_task(engine.ingest(queue), name="ingest"),
    ]

    try:
        await shutdown_event.wait()
    finally:
        logger.info("Initiating graceful shutdown...")
        logs_feed.stop()
        trade_feed.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await engine.stop()
        await oracle.close()
        await enricher.close()
        await telegram.close()
        logger.info("Shutdown complete")


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level, log_dir=config.LOG_DIR)

    if platform.system() == "Windows":
        sys.stdout.reconfigure(encoding='utf-8')
        sys.stderr.reconfigure(encoding='utf-8')

    try:
        asyncio.run(run(args))
    except ConfigurationException as e:
        logger.error(f"❌ Configuration error: {e}")
        return 1
    except SniperException as e:
        logger.error(f"❌ Fatal: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n👋 Keyboard interrupt - shutting down...")
    return 0


if __name__ == "__main__":
    sys.exit(main())
