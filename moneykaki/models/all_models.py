# Import all models so Base.metadata.create_all() can see them.

from moneykaki.models.account import Account  # noqa: F401
from moneykaki.models.ledger import BalanceLedger  # noqa: F401
from moneykaki.models.reward import Reward, RewardAssignment  # noqa: F401
from moneykaki.models.challenge import Challenge, ChallengeClaim  # noqa: F401
from moneykaki.models.merchant import Merchant, MerchantRedemption  # noqa: F401
from moneykaki.models.finance import Transaction, Goal, Saving, UserFinances  # noqa: F401
from moneykaki.models.wrapping import Wrapping  # noqa: F401
from moneykaki.models.billing import PaymentOrder  # noqa: F401
