"""
Fraud prevention headers required on every HMRC API call.

The header set is rebuilt on each call. Only the device identifier is
persistent: it is created once per store scope and read back afterwards.
"""

import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from hmrc_rti.hmrc.kv_store import KeyValueStore
from hmrc_rti.hmrc.models import ClientEnvironment, ScreenInfo, WindowSize
from hmrc_rti.hmrc.utils import encode_canonical_json
from hmrc_rti.simple_logger import get_logger

logger = get_logger("fraud_prevention")

CONNECTION_METHOD = 'WEB_APP_VIA_SERVER'
DEVICE_ID_KEY = 'hmrc_device_id'

HEADER_NAMES = (
    'Connection-Method',
    'Device-ID',
    'User-IDs',
    'Timezone',
    'Local-IPs',
    'Screens',
    'Window-Size',
    'Browser-Plugins',
    'Browser-JS-User-Agent',
    'Browser-Do-Not-Track',
    'Multi-Factor',
)


def as_request_headers(header_set: Dict[str, str]) -> Dict[str, str]:
    """Gov-Client-* HTTP header names for a generated header set."""
    return {f"Gov-Client-{name}": value for name, value in header_set.items()}


def format_utc_offset(offset: Optional[timedelta]) -> str:
    """timedelta(hours=5, minutes=30) -> 'UTC+05:30'"""
    total_minutes = int((offset or timedelta(0)).total_seconds() // 60)
    sign = '-' if total_minutes < 0 else '+'
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"UTC{sign}{hours:02d}:{minutes:02d}"


def format_instant(moment: datetime) -> str:
    """ISO-8601 UTC instant with millisecond precision and a Z suffix."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FraudPreventionHeaders:
    """Builds the 11 fraud prevention header values for one device scope."""

    def __init__(self, store: KeyValueStore, environment: Optional[ClientEnvironment] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.environment = environment or ClientEnvironment()
        self.clock = clock or _utcnow
        self._device_lock = threading.Lock()
        self._device_id: Optional[str] = None

    def device_id(self) -> str:
        """Stable device identifier for this store scope, created on first use."""
        if self._device_id:
            return self._device_id
        with self._device_lock:
            if self._device_id:
                return self._device_id
            existing = self.store.get(DEVICE_ID_KEY)
            if existing:
                self._device_id = existing
            else:
                self._device_id = self.store.set_if_absent(DEVICE_ID_KEY, str(uuid.uuid4()))
                logger.info("Created HMRC fraud prevention device id")
        return self._device_id

    def generate_headers(self, user_id: Optional[str] = None,
                         environment: Optional[ClientEnvironment] = None) -> Dict[str, str]:
        env = environment or self.environment
        now = self.clock()
        screen = env.screen or ScreenInfo()
        window = env.window or WindowSize()
        offset = env.utc_offset if env.utc_offset is not None else now.astimezone().utcoffset()

        return {
            'Connection-Method': CONNECTION_METHOD,
            'Device-ID': self.device_id(),
            'User-IDs': encode_canonical_json([user_id] if user_id else []),
            'Timezone': format_utc_offset(offset),
            # Local IP discovery is not possible from a server context
            'Local-IPs': encode_canonical_json([]),
            'Screens': encode_canonical_json({
                'width': screen.width,
                'height': screen.height,
                'scalingFactor': screen.scaling_factor,
                'colourDepth': screen.colour_depth,
            }),
            'Window-Size': encode_canonical_json({
                'width': window.width,
                'height': window.height,
            }),
            'Browser-Plugins': encode_canonical_json(list(env.plugins or [])),
            'Browser-JS-User-Agent': env.user_agent or 'Unknown',
            'Browser-Do-Not-Track': 'true' if env.do_not_track else 'false',
            'Multi-Factor': encode_canonical_json({
                'type': 'NONE',
                'timestamp': format_instant(now),
            }),
        }
