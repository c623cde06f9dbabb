from __future__ import annotations

# Import fixtures from testing/ so they are known by pytest
# and can be used with
from testing.signaling_server import signaling_server
