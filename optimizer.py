"""
Tax-optimised drawdown for a household.

Money is taken in order of what it costs in tax this year:

1. taxable pension inside every person's personal allowance (0%)
2. taxable pension inside every person's basic-rate band
3. ISA
4. pension at higher rates

Within a band, the draw is shared across people in proportion to the net
each of them could take before leaving that band, so one partner is never
pushed up a band while the other still has room below it.
"""
import logging

from models import WithdrawalBreakdown
from withdrawals import (
    PENNY, DrawContext, draw_for_net, draw_for_taxable, draw_pension, net_for_draw,
    pension_available, withdraw_isas, withdraw_pensions_for_net,
)

log = logging.getLogger(__name__)


def _band_offers(people, ctx: DrawContext, breakdown: WithdrawalBreakdown, ceiling: float):
    """(person, gross, net) each person could draw before their taxable income hits `ceiling`."""
    offers = []
    for p in people:
        if pension_available(p, ctx.year) <= 0:
            continue
        headroom = ceiling - ctx.existing_taxable(p, breakdown)
        if headroom <= PENNY:
            continue
        gross = draw_for_taxable(p, headroom, ctx)
        net = net_for_draw(p, gross, ctx, breakdown)
        if net > PENNY:
            offers.append((p, gross, net))
    return offers


def fill_band_proportionally(people, remaining: float, ctx: DrawContext,
                             breakdown: WithdrawalBreakdown, ceiling: float) -> float:
    if remaining <= PENNY:
        return remaining
    offers = _band_offers(people, ctx, breakdown, ceiling)
    total = sum(net for _, _, net in offers)
    if total <= 0:
        return remaining
    if total <= remaining:
        for p, gross, _ in offers:
            remaining -= draw_pension(p, gross, ctx, breakdown)
    else:
        scale = remaining / total
        for p, _, net in offers:
            gross = draw_for_net(p, net * scale, ctx, breakdown)
            remaining -= draw_pension(p, gross, ctx, breakdown)
    return max(0.0, remaining)


def proportional_pension_draw(people, remaining: float, ctx: DrawContext,
                              breakdown: WithdrawalBreakdown) -> float:
    if remaining <= PENNY:
        return remaining
    available = [(p, pension_available(p, ctx.year)) for p in people]
    total = sum(a for _, a in available)
    if total <= 0:
        return remaining
    target = remaining
    for p, a in available:
        if a <= 0:
            continue
        gross = draw_for_net(p, target * a / total, ctx, breakdown)
        remaining -= draw_pension(p, gross, ctx, breakdown)
    # someone ran dry before their share was met
    return withdraw_pensions_for_net(people, remaining, ctx, breakdown)


def tax_optimized(people, net_needed: float, ctx: DrawContext) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    if net_needed <= 0:
        return breakdown
    remaining = fill_band_proportionally(people, net_needed, ctx, breakdown, ctx.personal_allowance)
    remaining = fill_band_proportionally(people, remaining, ctx, breakdown, ctx.basic_rate_limit)
    remaining = withdraw_isas(people, remaining, breakdown)
    remaining = proportional_pension_draw(people, remaining, ctx, breakdown)
    if remaining > 1:
        log.debug("tax_optimized: %.2f of %.2f unmet in %d", remaining, net_needed, ctx.year)
    return breakdown
