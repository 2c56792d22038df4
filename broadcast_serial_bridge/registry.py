from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from .comm import Channel
from .errors import NotRegistered

_logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Maps logical channel ids to live channels.
    Registering an id again replaces the stored channel; the replaced
    channel is left as it is and remains the caller's to close.
    """

    def __init__(self) -> None:
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()

    def register(self, channel_id: str, channel: Channel) -> Optional[Channel]:
        """
        Store a channel under an id.
        Returns:
            Channel or None: The channel previously stored under the id
        """
        with self._lock:
            previous = self._channels.get(channel_id)
            self._channels[channel_id] = channel
        if previous is not None and previous is not channel:
            _logger.info("replaced channel %s", channel_id)
        else:
            _logger.debug("registered channel %s", channel_id)
        return previous

    def lookup(self, channel_id: str) -> Channel:
        """
        Raises:
            NotRegistered: If nothing is registered under the id
        """
        try:
            return self._channels[channel_id]
        except KeyError:
            raise NotRegistered(f"channel {channel_id!r} is not registered", channel=channel_id) from None

    def unregister(self, channel_id: str) -> None:
        """Remove a channel and close it."""
        with self._lock:
            channel = self._channels.pop(channel_id, None)
        if channel is None:
            raise NotRegistered(f"channel {channel_id!r} is not registered", channel=channel_id)
        channel.close()
        _logger.debug("unregistered channel %s", channel_id)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._channels

    def __len__(self) -> int:
        return len(self._channels)

    def ids(self) -> List[str]:
        return sorted(self._channels)

    def close(self) -> None:
        with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            channel.close()
