import logging

log = logging.getLogger(__name__)


class GuardrailsState:
    """
    Guyton-Klinger simplified: compare the current withdrawal rate with the rate
    at the start of retirement. Above upper_limit x initial => cut by
    `adjustment`, below lower_limit x initial => raise by `adjustment`.
    """

    def __init__(self, upper_limit: float = 1.20, lower_limit: float = 0.80, adjustment: float = 0.10):
        self.upper_limit = upper_limit
        self.lower_limit = lower_limit
        self.adjustment = adjustment
        self.initial_rate = 0.0
        self.initial_portfolio = 0.0
        self.current_withdrawal = 0.0

    def initialize(self, portfolio: float, withdrawal: float):
        self.initial_portfolio = portfolio
        self.current_withdrawal = withdrawal
        self.initial_rate = withdrawal / portfolio if portfolio > 0 else 0.0

    @property
    def initialized(self) -> bool:
        return self.initial_rate > 0

    def inflate(self, rate: float):
        self.current_withdrawal *= (1 + rate)

    def current_rate(self, portfolio: float) -> float:
        if portfolio <= 0:
            return 0.0
        return self.current_withdrawal / portfolio

    def _ratio(self, portfolio: float) -> float:
        return self.current_rate(portfolio) / self.initial_rate

    def is_triggered(self, portfolio: float) -> int:
        """-1 if the next adjustment cuts, 1 if it raises, 0 otherwise."""
        if not self.initialized or portfolio <= 0:
            return 0
        ratio = self._ratio(portfolio)
        if ratio > self.upper_limit:
            return -1
        if ratio < self.lower_limit:
            return 1
        return 0

    def adjusted_withdrawal(self, portfolio: float, base_withdrawal: float) -> float:
        if not self.initialized or portfolio <= 0:
            return base_withdrawal
        if self.current_withdrawal <= 0:
            self.current_withdrawal = base_withdrawal
        direction = self.is_triggered(portfolio)
        if direction:
            log.debug("guardrail %s: rate %.4f vs initial %.4f",
                      "cut" if direction < 0 else "raise",
                      self.current_rate(portfolio), self.initial_rate)
            self.current_withdrawal *= (1 + direction * self.adjustment)
        return self.current_withdrawal
