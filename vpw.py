# Variable Percentage Withdrawal: share of the portfolio to spend at each age.
# Rates climb so the pot is roughly used up in the late 90s.

VPW_RATES = {
    55: 0.030, 56: 0.031, 57: 0.032, 58: 0.033, 59: 0.034,
    60: 0.035, 61: 0.036, 62: 0.037, 63: 0.039, 64: 0.040,
    65: 0.042, 66: 0.043, 67: 0.045, 68: 0.047, 69: 0.048,
    70: 0.050, 71: 0.052, 72: 0.054, 73: 0.056, 74: 0.058,
    75: 0.061, 76: 0.064, 77: 0.067, 78: 0.070, 79: 0.073,
    80: 0.077, 81: 0.081, 82: 0.085, 83: 0.089, 84: 0.094,
    85: 0.100, 86: 0.106, 87: 0.113, 88: 0.120, 89: 0.128,
    90: 0.137, 91: 0.147, 92: 0.159, 93: 0.172, 94: 0.187,
    95: 0.204, 96: 0.224, 97: 0.247, 98: 0.274, 99: 0.307,
    100: 0.350,
}
MIN_VPW_AGE = min(VPW_RATES)
MAX_VPW_AGE = max(VPW_RATES)

# (age upper bound, remaining years) - blended UK averages
LIFE_EXPECTANCY = [
    (55, 30.0), (60, 25.0), (65, 21.0), (70, 17.0), (75, 13.5),
    (80, 10.0), (85, 7.5), (90, 5.5), (95, 4.0),
]


def vpw_rate(age: int) -> float:
    if age < MIN_VPW_AGE:
        return VPW_RATES[MIN_VPW_AGE]
    if age > MAX_VPW_AGE:
        return VPW_RATES[MAX_VPW_AGE]
    return VPW_RATES[age]


def life_expectancy_years(age: int) -> float:
    for upto, years in LIFE_EXPECTANCY:
        if age <= upto:
            return years
    return 3.0


class VPWState:
    def __init__(self, floor: float = 0.0, ceiling_multiplier: float = 0.0):
        self.initial_floor = floor
        self.floor = floor
        self.ceiling_multiplier = ceiling_multiplier

    def withdrawal(self, portfolio: float, age: int, inflation_multiplier: float = 1.0) -> float:
        amount = portfolio * vpw_rate(age)
        if self.initial_floor > 0:
            self.floor = self.initial_floor * inflation_multiplier
            amount = max(amount, self.floor)
            if self.ceiling_multiplier > 0:
                amount = min(amount, self.floor * self.ceiling_multiplier)
        return amount
