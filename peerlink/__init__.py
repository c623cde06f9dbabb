"""peerlink orchestrates WebRTC data channels between peers via a relay."""
from __future__ import annotations

import importlib.metadata as importlib_metadata

__version__ = importlib_metadata.version('peerlink')
