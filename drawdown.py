import logging

from models import DrawdownOrder, WithdrawalBreakdown
from optimizer import tax_optimized
from withdrawals import (
    PENNY, DrawContext, deposit_excess, draw_for_net, draw_for_taxable, draw_pension,
    household_isa_room, net_for_draw, withdraw_isas, withdraw_pensions_for_net,
)

log = logging.getLogger(__name__)


def savings_first(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    remaining = withdraw_isas(people, net_needed, breakdown)
    withdraw_pensions_for_net(people, remaining, ctx, breakdown)
    return breakdown


def pension_first(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    remaining = withdraw_pensions_for_net(people, net_needed, ctx, breakdown)
    withdraw_isas(people, remaining, breakdown)
    return breakdown


def pension_only(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    breakdown = WithdrawalBreakdown()
    remaining = withdraw_pensions_for_net(people, net_needed, ctx, breakdown)
    if remaining > PENNY and not any(p.total_pension > PENNY for p in people):
        # last resort once every pension is empty
        withdraw_isas(people, remaining, breakdown)
    return breakdown


def _basic_band_headroom(person, ctx: DrawContext, breakdown) -> float:
    return max(0.0, ctx.basic_rate_limit - ctx.existing_taxable(person, breakdown))


def _fill_and_bank(people, net_needed, ctx: DrawContext, equal_split: bool,
                   top_up_isas: bool = False) -> WithdrawalBreakdown:
    """Draw each person's pension up to the basic-rate limit, spend what is
    needed and bank the rest in ISAs. Over-draws stop at the household's
    remaining ISA allowance so no surplus is left unbanked."""
    breakdown = WithdrawalBreakdown()
    room = household_isa_room(people, breakdown)
    budget = net_needed + room
    received = 0.0

    for p in people:
        if budget - received <= PENNY:
            break
        target = _basic_band_headroom(p, ctx, breakdown)
        if target <= 0:
            continue
        gross = draw_for_taxable(p, target, ctx)
        if net_for_draw(p, gross, ctx, breakdown) > budget - received:
            gross = draw_for_net(p, budget - received, ctx, breakdown)
        received += draw_pension(p, gross, ctx, breakdown)

    if top_up_isas and received >= net_needed:
        # carry on into the higher-rate band until every ISA allowance is used
        for p in people:
            if budget - received <= PENNY:
                break
            gross = draw_for_net(p, budget - received, ctx, breakdown)
            received += draw_pension(p, gross, ctx, breakdown)

    excess = received - net_needed
    if excess > 0:
        deposit_excess(people, excess, breakdown, equal_split)
    elif excess < 0:
        short = withdraw_isas(people, -excess, breakdown)
        withdraw_pensions_for_net(people, short, ctx, breakdown)
    return breakdown


def pension_to_isa(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    if net_needed <= 0:
        return WithdrawalBreakdown()
    return _fill_and_bank(people, net_needed, ctx, equal_split=True,
                          top_up_isas=ctx.maximize_couple_isa)


def pension_to_isa_proactive(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    # also runs with nothing needed, while earnings still cover living costs
    return _fill_and_bank(people, max(0.0, net_needed), ctx, equal_split=True,
                          top_up_isas=ctx.maximize_couple_isa)


def fill_basic_rate(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    return _fill_and_bank(people, max(0.0, net_needed), ctx, equal_split=False)


def state_pension_bridge(people, net_needed, ctx: DrawContext) -> WithdrawalBreakdown:
    if net_needed <= 0:
        return WithdrawalBreakdown()
    if any(v > 0 for v in ctx.state_pension.values()):
        return pension_first(people, net_needed, ctx)
    return _fill_and_bank(people, net_needed, ctx, equal_split=False)


DRAWDOWN_HANDLERS = {
    DrawdownOrder.SAVINGS_FIRST: savings_first,
    DrawdownOrder.PENSION_FIRST: pension_first,
    DrawdownOrder.TAX_OPTIMIZED: tax_optimized,
    DrawdownOrder.PENSION_TO_ISA: pension_to_isa,
    DrawdownOrder.PENSION_TO_ISA_PROACTIVE: pension_to_isa_proactive,
    DrawdownOrder.PENSION_ONLY: pension_only,
    DrawdownOrder.FILL_BASIC_RATE: fill_basic_rate,
    DrawdownOrder.STATE_PENSION_BRIDGE: state_pension_bridge,
}

# Orders that draw even in a year with nothing to fund
DRAWS_WITHOUT_NEED = {DrawdownOrder.PENSION_TO_ISA_PROACTIVE, DrawdownOrder.FILL_BASIC_RATE}


def execute_drawdown(people, net_needed: float, order: DrawdownOrder, ctx: DrawContext) -> WithdrawalBreakdown:
    handler = DRAWDOWN_HANDLERS[order]
    breakdown = handler(people, net_needed, ctx)
    log.debug(
        "%d %s: need %.2f, withdrew %.2f, banked %.2f",
        ctx.year, order.value, net_needed, breakdown.total_withdrawn, breakdown.total_isa_deposits,
    )
    return breakdown
