"""
Notification Service for wallet owners
Publishes owner notifications to Redis; the chat transport subscribes to the
channel and delivers them.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

import redis

from shared.crypto.chains import Chain

logger = logging.getLogger(__name__)


class NotificationCategory:
    SWEEP = "sweep"
    REAUTHORIZE = "reauthorize"
    GAVE_UP = "gave_up"


class NotificationService:
    def __init__(self, redis_host: str = "redis", redis_port: int = 6379,
                 channel: str = "sweeper_notifications", redis_client: redis.Redis = None):
        self.redis_client = redis_client or redis.Redis(host=redis_host, port=redis_port, decode_responses=True)
        self.notification_channel = channel

    def notify(self, owner_id, message: str, category: str = NotificationCategory.SWEEP,
               title: Optional[str] = None) -> bool:
        """Publish one notification. Never raises; returns whether it was published."""
        try:
            notification_message = {
                "message_id": str(uuid.uuid4()),
                "user_id": owner_id,
                "type": f"sweeper_{category}",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "notification": {
                    "title": title or _TITLES.get(category, "Wallet sweeper"),
                    "message": message,
                    "category": category,
                }
            }
            message_json = json.dumps(notification_message, default=str)
            result = self.redis_client.publish(self.notification_channel, message_json)
            logger.info(f"🔔 Published {category} notification for owner {owner_id} "
                        f"to '{self.notification_channel}' ({result} subscribers)")
            return True
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(f"Failed to send {category} notification to owner {owner_id}: {e}")
            return False


_TITLES = {
    NotificationCategory.SWEEP: "Sweep completed",
    NotificationCategory.REAUTHORIZE: "Manual authorization needed",
    NotificationCategory.GAVE_UP: "Sweep failed",
}


def sweep_success_message(chain, amount: int, receiver_address: str, tx_hash: str) -> str:
    chain = Chain.parse(chain)
    return (
        f"✅ Swept {chain.to_major(amount)} {chain.value} to {receiver_address}\n"
        f"Transaction: {tx_hash}\n"
        f"View on explorer: {chain.explorer_tx_url(tx_hash)}"
    )


def reauthorize_message(chain, address: str, balance: int) -> str:
    chain = Chain.parse(chain)
    return (
        f"⚠️ {address} holds {chain.to_major(balance)} {chain.value}, above your sweep threshold. "
        f"This wallet is connected through a browser wallet, so it cannot be swept automatically. "
        f"Please approve the transfer manually in your wallet."
    )


def gave_up_message(chain, address: str, reason: str) -> str:
    chain = Chain.parse(chain)
    return f"❌ Could not sweep {chain.value} wallet {address}: {reason}"
