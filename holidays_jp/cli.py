"""Command line interface module."""

import atexit
from typing import Optional

import click

from .config import Config
from .error_handler import BaseApplicationError, ConfigurationError, handle_error
from .holiday_service import HolidayService, parse_date_flexible
from .logging_config import (
    setup_logging, LogLevel, LogFormat, log_performance,
    log_function_call, cleanup_logging
)


def _build_service(ctx) -> HolidayService:
    settings = ctx.obj['config'].get_cache_settings()
    return HolidayService(settings)


def _fail(error: BaseApplicationError, operation: str):
    # operation が設定済みのエラーは with_error_handling で記録済み
    if not error.operation:
        error.operation = operation
        handle_error(error)
    click.echo(f"Error: {error.get_user_message()}", err=True)
    for suggestion in error.recovery_suggestions[:2]:
        click.echo(f"  - {suggestion}", err=True)
    raise click.Abort()


@click.group(invoke_without_command=True)
@click.option('--config', '-c', help='Configuration file path')
@click.option('--debug', is_flag=True, help='Enable debug mode with verbose logging')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
              default='WARNING', help='Set logging level')
@click.option('--log-format', type=click.Choice(['simple', 'detailed', 'json', 'structured']),
              default='simple', help='Set log format')
@click.option('--enable-monitoring', is_flag=True, help='Enable performance monitoring')
@click.pass_context
def cli(ctx, config: Optional[str], debug: bool, log_level: str, log_format: str,
        enable_monitoring: bool):
    """Japanese national holiday checker (Cabinet Office data).

    Examples:
      holidays-jp check 2024-11-03
      holidays-jp list -s 2024-01-01 -e 2024-12-31
      holidays-jp update
    """
    ctx.ensure_object(dict)

    try:
        logging_manager = setup_logging(
            log_level=getattr(LogLevel, log_level),
            log_format=getattr(LogFormat, log_format.upper()),
            enable_performance_monitoring=enable_monitoring,
            debug_mode=debug
        )
        ctx.obj['logging_manager'] = logging_manager
        ctx.obj['config'] = Config(config)
    except ConfigurationError as e:
        _fail(e, "cli_initialization")

    # サブコマンド無しの場合は今日を判定
    if ctx.invoked_subcommand is None:
        ctx.invoke(check)


@cli.command()
@click.argument('date_arg', metavar='DATE', required=False)
@click.option('--date', '-d', 'date_opt', help='Date to check (default: today in Japan)')
@click.pass_context
@log_performance("check_holiday")
@log_function_call(log_args=True)
def check(ctx, date_arg: Optional[str] = None, date_opt: Optional[str] = None):
    """Check if a specific date is a Japanese holiday.

    DATE accepts YYYY-MM-DD, YYYY/MM/DD, YYYYMMDD, YYYY年MM月DD日,
    MM/DD/YYYY, DD/MM/YYYY and YYYY.MM.DD.
    """
    try:
        service = _build_service(ctx)
        service.initialize()

        target = date_opt or date_arg or service.get_today_date()
        is_holiday, name = service.get_holiday(target)

        if is_holiday:
            click.echo(f"{target} is a holiday: {name}")
        else:
            click.echo(f"{target} is not a holiday")

            next_holiday = service.get_next_holiday(target)
            if next_holiday:
                next_date, next_name = next_holiday
                days_until = (parse_date_flexible(next_date) - parse_date_flexible(target)).days
                click.echo(f"Next holiday: {next_date} ({next_name}) in {days_until} days")

    except BaseApplicationError as e:
        _fail(e, "check_holiday")


@cli.command('list')
@click.option('--start', '-s', required=True, help='Start date (inclusive)')
@click.option('--end', '-e', required=True, help='End date (inclusive)')
@click.pass_context
@log_performance("list_holidays")
@log_function_call(log_args=True)
def list_holidays(ctx, start: str, end: str):
    """List holidays between two dates."""
    try:
        service = _build_service(ctx)
        service.initialize()

        holidays = service.get_holidays_in_range(start, end)
        if not holidays:
            click.echo(f"No holidays found between {start} and {end}")
            return

        click.echo(f"Holidays between {start} and {end}:")
        for holiday_date, name in holidays:
            click.echo(f"  {holiday_date}: {name}")
        click.echo(f"Total: {len(holidays)} holidays")

    except BaseApplicationError as e:
        _fail(e, "list_holidays")


@cli.command()
@click.option('--clear', is_flag=True, help='Delete the cache file before downloading')
@click.pass_context
@log_performance("update_holidays")
def update(ctx, clear: bool):
    """Download the holiday data again, ignoring the cache."""
    try:
        service = _build_service(ctx)
        if clear and service.cache.store.delete():
            click.echo(f"Deleted cache file: {service.cache.store.cache_file}")

        click.echo("Updating holiday data...")
        service.update()

        stats = service.get_stats()
        click.echo("Successfully updated holiday data:")
        click.echo(f"  Total holidays: {stats['total']}")
        if stats['total']:
            click.echo(f"  Years covered: {stats['years']} ({stats['min_year']}-{stats['max_year']})")

    except BaseApplicationError as e:
        _fail(e, "update_holidays")


atexit.register(cleanup_logging)


if __name__ == '__main__':
    cli()
