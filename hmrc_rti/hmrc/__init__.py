"""
HMRC RTI integration: OAuth token lifecycle, fraud prevention headers and
FPS/EPS/EYU document generation.
"""

from .auth import HMRCAuth, is_token_expired
from .fraud_prevention import FraudPreventionHeaders
from .kv_store import InMemoryStore, KeyValueStore, RedisStore, create_store
from .rti_xml import RTIXMLGenerator
from .submission import PreparedSubmission, check_same_period, credential_lock, prepare_submission
from .token_storage import SecureTokenStorage
from .utils import escape_xml, map_period_type, mask_paye_reference

__all__ = [
    'HMRCAuth',
    'is_token_expired',
    'FraudPreventionHeaders',
    'KeyValueStore',
    'InMemoryStore',
    'RedisStore',
    'create_store',
    'RTIXMLGenerator',
    'PreparedSubmission',
    'prepare_submission',
    'check_same_period',
    'credential_lock',
    'SecureTokenStorage',
    'escape_xml',
    'map_period_type',
    'mask_paye_reference',
]
