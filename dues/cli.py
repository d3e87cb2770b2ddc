import asyncio
import sys

from dataclasses import dataclass
from typing import Annotated

import cappa
import granian

from cappa.output import error_format
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from dues import __version__
from dues.core.conf import settings
from dues.core.logging import setup_logging
from dues.src.billing.external.stripe import configure_stripe
from dues.utils.console import console

output_help = '\nFor more information, try "[cyan]--help[/]"'


def _mode_panel(title: str, dry_run: bool, mode: str) -> Panel:
    content = Text()
    content.append('Stripe mode: ', style='bold cyan')
    content.append(mode.upper(), style='yellow' if mode == 'test' else 'bold red')
    content.append('\nRun type: ', style='bold cyan')
    content.append('DRY RUN (no changes)' if dry_run else 'LIVE (changes will be applied)', style='green' if dry_run else 'bold red')
    return Panel(content, title=f'dues v{__version__} | {title}', border_style='cyan', padding=(1, 2))


def _errors_table(errors: list[dict]) -> Table:
    table = Table(title='Errors', show_lines=False)
    table.add_column('Member / Subscription', style='cyan')
    table.add_column('Error', style='red')
    for error in errors:
        subject = error.get('email') or error.get('member_id') or ''
        if error.get('subscription_id'):
            subject = f"{subject} {error['subscription_id']}".strip()
        table.add_row(subject, error.get('error', ''))
    return table


def _confirm_live_run(message: str, assume_yes: bool) -> None:
    if assume_yes:
        return
    ok = Prompt.ask(message, choices=['y', 'n'], default='n')
    if ok.lower() != 'y':
        raise cappa.Exit('Cancelled', code=0)


async def migrate_renewals(dry_run: bool, test_mode: bool, assume_yes: bool) -> None:
    from dues.src.billing.maintenance import renewal_alignment_migrator

    mode = configure_stripe(test_mode)
    console.print(_mode_panel('Renewal alignment to January 1st', dry_run, mode))

    if not dry_run:
        _confirm_live_run('Move every eligible renewal to January 1st?', assume_yes)
        seconds = settings.BILLING_MIGRATION_CONFIRM_SECONDS
        console.print(f'Starting in {seconds} seconds, press Ctrl+C to abort', style='bold yellow')
        await asyncio.sleep(seconds)

    try:
        summary = await renewal_alignment_migrator.run(dry_run=dry_run)
    except Exception as e:
        raise cappa.Exit(f'Renewal alignment failed: {e}', code=1)

    table = Table(title=f"Renewal alignment to {summary['target_date'][:10]}")
    table.add_column('Metric', style='cyan')
    table.add_column('Count', justify='right')
    for key in ('members_total', 'members_skipped', 'processed', 'updated', 'skipped_terminal', 'skipped_aligned', 'errored'):
        table.add_row(key.replace('_', ' '), str(summary[key]))
    console.print(table)
    if summary['errors']:
        console.print(_errors_table(summary['errors']))
    if dry_run:
        console.print('\nDry run only. Re-run without [bold cyan]--dry-run[/] to apply', style='yellow')


async def resolve_duplicates(apply: bool, test_mode: bool, assume_yes: bool) -> None:
    from dues.src.billing.maintenance import duplicate_resolver

    mode = configure_stripe(test_mode)
    console.print(_mode_panel('Duplicate subscriptions', not apply, mode))
    if apply:
        _confirm_live_run('Cancel every duplicate subscription immediately?', assume_yes)

    try:
        summary = await duplicate_resolver.resolve(dry_run=not apply)
    except Exception as e:
        raise cappa.Exit(f'Duplicate resolution failed: {e}', code=1)

    table = Table(title=f"{summary['members_with_duplicates']} members with duplicates")
    table.add_column('Email', style='cyan')
    table.add_column('Kept', style='green')
    table.add_column('Canceled' if apply else 'To cancel', style='yellow')
    for report in summary['reports']:
        table.add_row(report['email'], report['kept'], ', '.join(report['canceled'] if apply else report['to_cancel']))
    console.print(table)
    if summary['errors']:
        console.print(_errors_table(summary['errors']))


async def cleanup_trials(apply: bool, cancel_all: bool, test_mode: bool, assume_yes: bool) -> None:
    from dues.src.billing.maintenance import trial_cleanup_service

    mode = configure_stripe(test_mode)
    console.print(_mode_panel('Trialing subscriptions without payment', not apply, mode))
    if apply:
        _confirm_live_run('Cancel the listed trialing subscriptions?', assume_yes)

    try:
        results = await trial_cleanup_service.run(apply=apply, cancel_all=cancel_all)
    except Exception as e:
        raise cappa.Exit(f'Trial cleanup failed: {e}', code=1)

    table = Table(title=f"{results['checked']} trialing subscriptions checked")
    table.add_column('Subscription', style='cyan')
    table.add_column('Email')
    table.add_column('Paid in last year', justify='center')
    table.add_column('Action', style='yellow')
    for entry in results['entries']:
        table.add_row(entry['subscription_id'], entry['email'] or '', 'yes' if entry['paid_recently'] else 'no', entry['action'])
    console.print(table)
    console.print(f"Candidates: {results['candidates']}  Canceled: {results['canceled']}  Failed: {results['failed']}")
    if results['errors']:
        console.print(_errors_table(results['errors']))


def run(host: str, port: int, reload: bool, workers: int) -> None:  # noqa: FBT001
    url = f'http://{host}:{port}'

    panel_content = Text()
    panel_content.append('Python version: ', style='bold cyan')
    panel_content.append(f'{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}', style='white')
    panel_content.append('\nAPI request address: ', style='bold cyan')
    panel_content.append(f'{url}{settings.FASTAPI_API_V1_PATH}/billing', style='blue')
    panel_content.append('\n\nEnvironment mode: ', style='bold green')
    panel_content.append(f'{settings.ENVIRONMENT.upper()}', style='yellow' if settings.ENVIRONMENT == 'dev' else 'green')
    panel_content.append('\nStripe mode: ', style='bold green')
    panel_content.append('TEST' if settings.STRIPE_TEST_MODE else 'LIVE', style='yellow')
    if settings.FASTAPI_DOCS_URL:
        panel_content.append(f'\n\nSwagger docs: {url}{settings.FASTAPI_DOCS_URL}', style='bold magenta')

    console.print(Panel(panel_content, title=f'dues v{__version__}', border_style='purple', padding=(1, 2)))
    try:
        granian.Granian(
            target='dues.main:app',
            interface='asgi',
            address=host,
            port=port,
            reload=not reload,
            workers=workers,
        ).serve()
    except KeyboardInterrupt:
        pass


@cappa.command(help='Run API service', default_long=True)
@dataclass
class Run:
    host: Annotated[
        str,
        cappa.Arg(default='127.0.0.1', help='Host IP address to serve on'),
    ]
    port: Annotated[
        int,
        cappa.Arg(default=8000, help='Port to serve on'),
    ]
    no_reload: Annotated[
        bool,
        cappa.Arg(default=False, help='Disable auto reload on code changes'),
    ]
    workers: Annotated[
        int,
        cappa.Arg(default=1, help='Number of worker processes, requires `--no-reload`'),
    ]

    def __call__(self) -> None:
        run(host=self.host, port=self.port, reload=self.no_reload, workers=self.workers)


@cappa.command(name='migrate-renewals', help='Align every renewal to January 1st', default_long=True)
@dataclass
class MigrateRenewals:
    dry_run: Annotated[bool, cappa.Arg(default=False, help='Report what would change without touching Stripe')]
    test_mode: Annotated[bool, cappa.Arg(default=False, help='Use the Stripe test secret key')]
    yes: Annotated[bool, cappa.Arg(short='-y', default=False, help='Skip the confirmation prompt')]

    async def __call__(self) -> None:
        await migrate_renewals(self.dry_run, self.test_mode, self.yes)


@cappa.command(name='duplicates', help='Find and cancel duplicate live subscriptions', default_long=True)
@dataclass
class Duplicates:
    apply: Annotated[bool, cappa.Arg(default=False, help='Cancel duplicates (default is a preview)')]
    test_mode: Annotated[bool, cappa.Arg(default=False, help='Use the Stripe test secret key')]
    yes: Annotated[bool, cappa.Arg(short='-y', default=False, help='Skip the confirmation prompt')]

    async def __call__(self) -> None:
        await resolve_duplicates(self.apply, self.test_mode, self.yes)


@cappa.command(name='trial-cleanup', help='Cancel trialing subscriptions with no payment in the last year', default_long=True)
@dataclass
class TrialCleanup:
    apply: Annotated[bool, cappa.Arg(default=False, help='Cancel the candidates (default is a preview)')]
    cancel_all: Annotated[bool, cappa.Arg(default=False, help='Also cancel trials that were paid')]
    test_mode: Annotated[bool, cappa.Arg(default=False, help='Use the Stripe test secret key')]
    yes: Annotated[bool, cappa.Arg(short='-y', default=False, help='Skip the confirmation prompt')]

    async def __call__(self) -> None:
        await cleanup_trials(self.apply, self.cancel_all, self.test_mode, self.yes)


@cappa.command(help='Membership dues billing command line interface', default_long=True)
@dataclass
class DuesCli:
    log_level: Annotated[str, cappa.Arg(short='-l', default='INFO', help='Log level')]
    subcmd: cappa.Subcommands[Run | MigrateRenewals | Duplicates | TrialCleanup | None] = None

    def __post_init__(self) -> None:
        setup_logging(self.log_level)

    async def __call__(self) -> None:
        if self.subcmd is None:
            console.print(f'dues v{__version__}{output_help}')


def main() -> None:
    output = cappa.Output(error_format=f'{error_format}\n{output_help}')
    asyncio.run(cappa.invoke_async(DuesCli, version=__version__, output=output))
