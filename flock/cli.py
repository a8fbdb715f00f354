"""CLI tools for follow-up administration."""

import asyncio

import click

from flock.core.plans import get_plan_limits
from flock.db.enums import Plan
from flock.db.models import Organization
from flock.db.session import SessionLocal


@click.group()
def cli():
    """Flock CLI tools."""
    pass


@cli.command()
@click.option("--name", required=True, help="Organization (church) name")
@click.option("--slug", required=True, help="URL-friendly slug (lowercase, no spaces)")
@click.option(
    "--plan",
    type=click.Choice([p.value for p in Plan]),
    default=Plan.FREE.value,
    show_default=True,
    help="Subscription plan (sets SMS/MMS limits)",
)
def create_org(name: str, slug: str, plan: str):
    """
    Create an organization.

    Example:
        flock create-org --name "Grace Chapel" --slug "grace" --plan foundations
    """
    db = SessionLocal()
    try:
        slug = slug.lower().strip()
        if not slug.replace("-", "").replace("_", "").isalnum():
            click.echo("❌ Slug must be alphanumeric (with optional hyphens/underscores)")
            return

        existing = db.query(Organization).filter(Organization.slug == slug).first()
        if existing:
            click.echo(f"❌ Organization with slug '{slug}' already exists")
            return

        org = Organization(name=name, slug=slug, plan=plan)
        db.add(org)
        db.commit()

        limits = get_plan_limits(plan)
        click.echo(f"✓ Created organization: {name}")
        click.echo(f"  ID: {org.id}")
        click.echo(f"  Slug: {slug}")
        click.echo(f"  Plan: {plan} (SMS {limits.sms}/month, MMS {limits.mms}/month)")

    except Exception as e:
        db.rollback()
        click.echo(f"❌ Error: {e}")
    finally:
        db.close()


@cli.command()
def run_checks():
    """
    Run one pass of the follow-up rules and print the stats.

    Example:
        flock run-checks
    """
    from flock.services.followup_scheduler_service import run_followup_checks

    db = SessionLocal()
    try:
        results = asyncio.run(run_followup_checks(db))
        for rule, stats in results.items():
            summary = ", ".join(
                f"{key}={value}" for key, value in stats.items() if key != "errors"
            )
            errors = stats.get("errors", [])
            marker = "❌" if errors else "✓"
            click.echo(f"{marker} {rule}: {summary or 'aborted'} (errors={len(errors)})")
    finally:
        db.close()


@cli.command()
@click.option("--org-slug", required=True, help="Organization slug")
@click.option("--period", default=None, help="Billing period YYYY-MM (default: current month)")
def usage(org_slug: str, period: str | None):
    """
    Show SMS/MMS usage against the plan limits.

    Example:
        flock usage --org-slug grace --period 2026-10
    """
    from flock.services import quota_service

    db = SessionLocal()
    try:
        org = db.query(Organization).filter(Organization.slug == org_slug).first()
        if not org:
            click.echo(f"❌ Organization not found: {org_slug}")
            return

        period = period or quota_service.current_billing_period()
        counts = quota_service.get_usage(db, org.id, period)
        limits = get_plan_limits(org.plan)
        click.echo(f"{org.name} ({org.plan}) - {period}")
        click.echo(f"  SMS: {counts.sms_count}/{limits.sms}")
        click.echo(f"  MMS: {counts.mms_count}/{limits.mms}")
    finally:
        db.close()


if __name__ == "__main__":
    cli()
