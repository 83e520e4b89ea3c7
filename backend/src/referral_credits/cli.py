"""Command-line interface for the referral credit engine."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from referral_credits.auth.local import EmailAlreadyRegistered
from referral_credits.auth.registration import registration_service
from referral_credits.dashboard.service import dashboard_service
from referral_credits.errors import ReferralCreditError
from referral_credits.logging_config import configure_logging, get_logger
from referral_credits.purchases.service import purchase_service
from referral_credits.referral.codes import code_generator
from referral_credits.referral.service import referral_service
from referral_credits.storage.db import db

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="referral-credits",
    help="Referral credits - referral codes, conversions and credit rewards",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _fail(error: Exception) -> None:
    console.print(f"[bold red]✗[/bold red] {error}")
    raise typer.Exit(1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("account-create")
def create_account(
    email: Annotated[str, typer.Option("--email", "-e", help="Account email")],
    name: Annotated[str, typer.Option("--name", "-n", help="Account name")] = "",
    password: Annotated[str, typer.Option("--password", "-p", help="Password (optional)")] = "",
    referral_code: Annotated[str, typer.Option("--referral-code", "-r", help="Referral code to apply")] = "",
) -> None:
    """Create an account, optionally referred by another account."""
    try:
        result = registration_service.register(
            email=email,
            password=password or None,
            name=name or None,
            referral_code=referral_code or None,
        )
    except EmailAlreadyRegistered as e:
        _fail(e)

    account = result.account
    console.print(f"[bold green]✓[/bold green] Account created with ID: [bold]{account.id}[/bold]")
    console.print(f"  Email: {account.email}")
    console.print(f"  Referral code: {account.referral_code or 'None'}")
    if result.referral:
        console.print(f"  Pending referral: {result.referral.referral_id}")
    for warning in result.warnings:
        console.print(f"[yellow]! {warning}[/yellow]")


@app.command("code-generate")
def generate_code(
    account_id: Annotated[int, typer.Argument(help="Account ID")],
    name_hint: Annotated[str, typer.Option("--name-hint", help="Readable code prefix")] = "",
) -> None:
    """Get an account's referral code, creating it if needed."""
    try:
        code = code_generator.generate_code(account_id, name_hint=name_hint or None)
    except ReferralCreditError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Referral code: [bold]{code}[/bold]")


@app.command("code-apply")
def apply_code(
    account_id: Annotated[int, typer.Argument(help="Referred account ID")],
    code: Annotated[str, typer.Argument(help="Referral code")],
) -> None:
    """Apply a referral code to an account."""
    try:
        result = referral_service.apply_referral_code(code, account_id)
    except ReferralCreditError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Referral [bold]{result.referral_id}[/bold] created ({result.status.value})"
    )


@app.command("referral-confirm")
def confirm_referral(
    referral_id: Annotated[int, typer.Argument(help="Referral ID")],
) -> None:
    """Confirm a pending referral and award both sides."""
    try:
        referral = referral_service.confirm(referral_id)
    except ReferralCreditError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Referral {referral.id} confirmed, "
        f"{referral.credits_earned} credits to each side"
    )


@app.command("referral-cancel")
def cancel_referral(
    referral_id: Annotated[int, typer.Argument(help="Referral ID")],
    reason: Annotated[str, typer.Option("--reason", help="Cancellation reason")] = "",
) -> None:
    """Cancel a pending referral."""
    try:
        referral_service.cancel(referral_id, reason=reason or None)
    except ReferralCreditError as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Referral {referral_id} cancelled")


@app.command("purchase-record")
def record_purchase(
    account_id: Annotated[int, typer.Argument(help="Purchasing account ID")],
    amount: Annotated[float, typer.Option("--amount", "-a", help="Purchase amount")],
    description: Annotated[str, typer.Option("--description", "-d", help="Description")] = "Purchase",
) -> None:
    """Record a completed purchase."""
    try:
        result = purchase_service.create_purchase(account_id, amount, description)
    except (ValueError, ReferralCreditError) as e:
        _fail(e)

    console.print(f"[bold green]✓[/bold green] Purchase recorded with ID: [bold]{result.purchase.id}[/bold]")
    reward = result.referral_reward
    if reward and reward.converted:
        console.print(f"  Referral {reward.referral_id} converted: +{reward.credits_earned} credits each")


@app.command("stats")
def show_stats(
    account_id: Annotated[int, typer.Argument(help="Account ID")],
) -> None:
    """Show referral statistics for an account."""
    try:
        stats = dashboard_service.get_referral_stats(account_id)
        history = dashboard_service.get_credit_history(account_id)
    except ReferralCreditError as e:
        _fail(e)

    table = Table(title=f"Referral Statistics - Account {account_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Referral code", stats["referral_code"] or "-")
    table.add_row("Total referrals", str(stats["total_referrals"]))
    table.add_row("Pending", str(stats["pending_referrals"]))
    table.add_row("Confirmed", str(stats["confirmed_referrals"]))
    table.add_row("Cancelled", str(stats["cancelled_referrals"]))
    table.add_row("Credits earned as referrer", str(stats["total_credits_earned"]))
    table.add_row("Credit balance", str(history["current_balance"]))

    console.print(table)


@app.command("integrity")
def check_integrity(
    account_id: Annotated[int, typer.Argument(help="Account ID")],
) -> None:
    """Audit an account's referral data."""
    try:
        report = dashboard_service.verify_data_integrity(account_id)
    except ReferralCreditError as e:
        _fail(e)

    if report["is_valid"]:
        console.print(f"[bold green]✓[/bold green] No issues for account {account_id}")
        return

    console.print(f"[bold yellow]{len(report['issues'])} issue(s) for account {account_id}:[/bold yellow]")
    for issue in report["issues"]:
        console.print(f"  - {issue}")
    raise typer.Exit(1)


if __name__ == "__main__":
    app()
