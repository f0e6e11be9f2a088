"""Typed domain views over the request service.

    base        : shared fetch/paginate/fan-out/invalidate helpers
    wallet      : balance, journal and transactions
    skills      : trained skills and the training queue
    assets      : enriched and valued assets
    member_audit: full snapshots and the sync cycle
"""

from .assets import AssetsAdapter
from .base import BaseAdapter
from .member_audit import MemberAuditAdapter
from .skills import SkillsAdapter
from .wallet import WalletAdapter

__all__ = [
    "AssetsAdapter",
    "BaseAdapter",
    "MemberAuditAdapter",
    "SkillsAdapter",
    "WalletAdapter",
]
