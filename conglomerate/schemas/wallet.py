from conglomerate.core.config import settings
from conglomerate.schemas.user import BalanceSummary


class WalletResponse(BalanceSummary):
    currency: str = settings.DEFAULT_CURRENCY
