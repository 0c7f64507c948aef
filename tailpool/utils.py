import re

import yaml
from environs import Env

from .contracts import ERC20Token
from .pool import InsurancePool, PoolConfig, time_control
from .wadray import _A

env = Env()

HOUR = 3600
DAY = 24 * HOUR
WEEK = 7 * DAY
MONTH = 30 * DAY
YEAR = 365 * DAY

AMOUNT_KEYS = ("user_deposit_cap", "min_deposit", "epoch_cap", "user_payout_cap", "dust_threshold")
PERIOD_KEYS = ("lockup_seconds", "min_seconds_between_deposits", "max_stale_seconds")


def parse_period(period):
    period = str(period)
    if period.isdigit():
        return int(period)
    else:
        count = int(period[:-1])
        multiplier = {
            "s": 1,
            "h": HOUR,
            "d": DAY,
            "w": WEEK,
            "m": MONTH,
            "y": YEAR,
        }[period[-1]]
        return count * multiplier


envvar_matcher = re.compile(r"\$\{([A-Za-z0-9_]+)(:-[^\}]*)?\}")


def envvar_constructor(loader, node):
    """
    Extract the matched value, expand env variable, and replace the match
    ${REQUIRED_ENV_VARIABLE} or ${ENV_VARIABLE:-default}
    """
    value = node.value
    match = envvar_matcher.match(value)
    env_var = match.group(1)
    default_value = match.group(2)
    if default_value is not None:
        return env.str(env_var, default_value[2:]) + value[match.end() :]
    else:
        return env.str(env_var) + value[match.end() :]


def _pool_config_params(params):
    params = dict(params)
    for key in AMOUNT_KEYS:
        if key in params:
            params[key] = _A(str(params[key]))
    for key in PERIOD_KEYS:
        if key in params:
            params[key] = parse_period(params[key])
    return params


def load_config(yaml_config=None):
    """Loads the pool from a YAML setup and returns it initialized

    @params yaml_config must be a file-like object or None (reads the file in SETUP_FILE)
    """
    if yaml_config is None:
        yaml_config_filename = env.path("SETUP_FILE")
        yaml_config = open(yaml_config_filename)

    yaml.add_implicit_resolver("!envvar", envvar_matcher, Loader=yaml.FullLoader)
    yaml.add_constructor("!envvar", envvar_constructor, Loader=yaml.FullLoader)
    config = yaml.load(yaml_config, Loader=yaml.FullLoader) or {}

    currency_params = dict(config.get("currency", {}))
    currency_params["owner"] = currency_params.get("owner", "owner")
    currency_params.setdefault("name", "USD")
    if "initial_supply" in currency_params:
        currency_params["initial_supply"] = _A(str(currency_params["initial_supply"]))
    initial_balances = currency_params.pop("initial_balances", [])
    currency = ERC20Token(**currency_params)
    for balance in initial_balances:
        currency.transfer(currency.owner, balance["user"], _A(str(balance["amount"])))

    pool_params = _pool_config_params(config.get("pool", {}))
    pool_params["currency"] = currency
    owner = pool_params.pop("owner", "owner")
    pool = InsurancePool(owner=owner)
    pool.initialize(PoolConfig(**pool_params))

    for reporter in config.get("reporters", []):
        pool.add_reporter(reporter)

    for epoch in config.get("epochs", []):
        start_ts = epoch.get("start_ts", time_control.now)
        if "duration" in epoch:
            end_ts = start_ts + parse_period(epoch["duration"])
        else:
            end_ts = epoch.get("end_ts", None)
        pool.start_epoch(epoch["epoch_id"], start_ts, end_ts)

    return pool
