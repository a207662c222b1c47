from market_ledger.signals.delivery import DiscordAlertNotifier

__all__ = ["DiscordAlertNotifier"]
