from tailpool.lots import SENIOR


def deposit(pool, lp, amount, tranche=SENIOR, referrer=None):
    """Approves and deposits a given amount, returns the net amount credited"""
    pool.currency.approve(lp, pool.contract_id, amount)
    with pool.as_(lp):
        return pool.deposit_insurance(amount, tranche, referrer)
