import logging

import click

from .pool import time_control
from .utils import load_config


@click.group()
@click.option("--log-level", default="INFO")
@click.option("--setup-file", type=click.File("r"), envvar="SETUP_FILE", required=True)
@click.pass_context
def cli(ctx, log_level, setup_file):
    logging.basicConfig(level=getattr(logging, log_level))
    ctx.obj = load_config(setup_file)


@cli.command()
@click.pass_obj
def stats(pool):
    for key, value in pool.pool_stats()._asdict().items():
        click.echo(f"{key}: {value}")


@cli.command()
@click.argument("amount", type=str)
@click.option("--with-referrer", is_flag=True, default=False)
@click.pass_obj
def quote_deposit(pool, amount, with_referrer):
    fees = pool.quote_deposit(amount, with_referrer)
    click.echo(f"protocol_fee: {fees.protocol_fee}")
    click.echo(f"referral_fee: {fees.referral_fee}")
    click.echo(f"net: {fees.net}")


@cli.command()
@click.argument("severity_bps", type=int)
@click.pass_obj
def severity(pool, severity_bps):
    curve = pool.config.severity_curve()
    click.echo(f"raw: {curve.raw_bps(severity_bps)}")
    click.echo(f"effective: {curve.effective_bps(severity_bps)}")


@cli.command()
@click.pass_obj
def epoch(pool):
    if pool.current_epoch_id is None:
        click.echo("No epoch started")
        return
    click.echo(f"now: {time_control.now}")
    for key, value in pool.epoch_stats().items():
        click.echo(f"{key}: {value}")


if __name__ == "__main__":
    cli()
