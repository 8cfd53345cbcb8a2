from .user import User  # noqa: F401
from .order import DesignOrder, OrderStatus  # noqa: F401
from .order_event import OrderEvent  # noqa: F401
from .escrow import EscrowRecord, EscrowStatus  # noqa: F401
from .escrow_transition import EscrowTransition  # noqa: F401

from .wallet import Wallet  # noqa: F401
from .wallet_txn import WalletTxn  # noqa: F401

from .risk import BuyerRiskScore, SellerRiskPolicy  # noqa: F401

from .audit_log import AuditLog  # noqa: F401

from .idempotency_key import IdempotencyKey  # noqa: F401
