# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/portal/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP (PowerShell: $env:FLASK_APP="portal"; bash: export FLASK_APP=portal).
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init --org "Acme Packaging" --admin-email ops@acme.test --admin-name "Ops Admin" --admin-identity "idp|ops"
#   Create the internal organization and its first admin. Refuses to run twice.
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations with project and principal counts.
# - python -m flask orgs create --name "Brightside Foods" --kind customer --contact-email ap@brightside.test
#   Create a customer organization (tenant). Acts as the first internal admin unless --actor is given.
#
# Principal inspection/bootstrap:
# - python -m flask principals list [--org-id 2]
#   List principals with organization and role.
# - python -m flask principals create --org-id 2 --email buyer@brightside.test --name "Buyer" --role customer --identity "idp|buyer"
#   Register a principal and map its external identity.
#
# Automation:
# - python -m flask automation sweep-overdue [--as-of 2026-02-05]
#   Mark sent invoices past due as overdue (runs as the "cli" system principal).
#
# Inspection:
# - python -m flask queue show [--identity "idp|ops"] [--limit 20]
#   Print the ranked action queue as seen by a principal.
# - python -m flask integrity check
#   Report rows that break stored invariants. Exit code 1 when issues are found.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import PortalError
from .models import Organization, Project, User
from .models.auth import ROLES, ROLE_ADMIN
from .models.tenancy import ORG_KINDS, ORG_KIND_CUSTOMER, ORG_KIND_INTERNAL
from .services import (
    action_queue_service,
    identity_service,
    integrity_service,
    invoice_service,
    organization_service,
)
from .validation import coerce_date


def _actor(actor_email):
    """
    Principal the CLI acts as: the named user, or the first internal admin.
    """
    query = db.session.query(User).join(Organization, Organization.id == User.organization_id)
    if actor_email:
        user = query.filter(User.email == actor_email.lower()).first()
    else:
        user = (
            query.filter(Organization.kind == ORG_KIND_INTERNAL, User.role == ROLE_ADMIN)
            .order_by(User.id.asc())
            .first()
        )
    if user is None:
        raise click.ClickException("No acting principal found. Run: python -m flask system init")
    return identity_service.principal_for_user(user)


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--org', 'org_name', required=True, help='Internal (operating company) organization name')
@click.option('--admin-email', required=True, help='First admin email')
@click.option('--admin-name', required=True, help='First admin display name')
@click.option('--admin-identity', required=True, help='External identity the gateway sends for the admin')
@with_appcontext
def init_system(org_name, admin_email, admin_name, admin_identity):
    """
    Create the internal organization and its first admin.

    There is no principal before this runs, so it is the only write that
    bypasses the policy layer.
    """
    try:
        org, admin = organization_service.bootstrap_internal_organization(
            name=org_name,
            admin_email=admin_email,
            admin_name=admin_name,
            admin_identity=admin_identity,
        )
    except PortalError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created internal organization: {org.name} (ID: {org.id})")
    click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id}, identity: {admin.external_identity})")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id.asc()).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Kind':<10} {'Projects':<10} {'Principals'}")
    click.echo("="*80)

    for org in orgs:
        project_count = db.session.query(Project).filter_by(organization_id=org.id).count()
        user_count = db.session.query(User).filter_by(organization_id=org.id).count()
        click.echo(f"{org.id:<5} {org.name:<30} {org.kind:<10} {project_count:<10} {user_count}")

    click.echo("="*80 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--kind', type=click.Choice(ORG_KINDS), default=ORG_KIND_CUSTOMER, show_default=True)
@click.option('--contact-email', default=None)
@click.option('--contact-phone', default=None)
@click.option('--actor', 'actor_email', default=None, help='Email of the admin acting (default: first internal admin)')
@with_appcontext
def create_org_cli(name, kind, contact_email, contact_phone, actor_email):
    """Create a new organization (tenant)."""
    try:
        org = organization_service.create_organization(
            _actor(actor_email),
            name=name,
            kind=kind,
            contact_email=contact_email,
            contact_phone=contact_phone,
        )
    except PortalError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}, Kind: {org.kind})")


@click.group('principals')
def principals_group():
    """Principal (user) inspection and registration."""


@principals_group.command('list')
@click.option('--org-id', type=int, default=None, help='Only principals of this organization')
@with_appcontext
def list_principals(org_id):
    query = db.session.query(User).order_by(User.organization_id.asc(), User.id.asc())
    if org_id is not None:
        query = query.filter(User.organization_id == org_id)
    users = query.all()

    if not users:
        click.echo("No principals found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Org':<5} {'Email':<35} {'Role':<10} {'Identity'}")
    click.echo("="*90)
    for user in users:
        click.echo(f"{user.id:<5} {user.organization_id:<5} {user.email:<35} {user.role:<10} {user.external_identity or '-'}")
    click.echo("="*90 + "\n")


@principals_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--email', required=True)
@click.option('--name', required=True)
@click.option('--role', type=click.Choice(ROLES), required=True)
@click.option('--identity', 'external_identity', default=None, help='External identity sent by the gateway')
@click.option('--actor', 'actor_email', default=None, help='Email of the principal acting (default: first internal admin)')
@with_appcontext
def create_principal_cli(org_id, email, name, role, external_identity, actor_email):
    """Register a principal in an organization."""
    try:
        user = identity_service.register_principal(
            _actor(actor_email),
            organization_id=org_id,
            email=email,
            name=name,
            role=role,
            external_identity=external_identity,
        )
    except PortalError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created principal: {user.email} (ID: {user.id}, Org: {user.organization_id}, Role: {user.role})")


@click.group('automation')
def automation_group():
    """Scheduled jobs, run as a system principal."""


@automation_group.command('sweep-overdue')
@click.option('--as-of', default=None, help='Business date to evaluate (YYYY-MM-DD, default today)')
@with_appcontext
def sweep_overdue_cli(as_of):
    """Mark sent invoices past their due date as overdue."""
    try:
        today = coerce_date("as-of", as_of)
    except PortalError as e:
        raise click.ClickException(e.message)

    report = invoice_service.sweep_overdue(identity_service.system_principal("cli"), today=today)
    click.echo(f"Overdue sweep as of {report['as_of']}: {report['checked']} checked, "
               f"{len(report['marked'])} marked, {len(report['failed'])} failed")
    for failure in report["failed"]:
        click.echo(f"  FAIL invoice {failure['invoice_id']}: {failure['error']} {failure['message']}")


@click.group('queue')
def queue_group():
    """Action queue inspection."""


@queue_group.command('show')
@click.option('--identity', default=None, help='External identity to view as (default: first internal admin)')
@click.option('--limit', type=int, default=None)
@with_appcontext
def show_queue(identity, limit):
    try:
        principal = identity_service.resolve_principal(identity) if identity else _actor(None)
        items = action_queue_service.list_action_queue(principal, limit=limit)
    except PortalError as e:
        raise click.ClickException(e.message)

    if not items:
        click.echo("Action queue is empty.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'P':<3} {'Type':<22} {'Identifier':<18} {'Customer':<25} {'Due':<12} {'Title'}")
    click.echo("="*100)
    for item in items:
        due = item.due_date.isoformat() if item.due_date else "-"
        click.echo(f"{item.priority:<3} {item.type:<22} {item.identifier:<18} {item.customer_name[:24]:<25} {due:<12} {item.title}")
    click.echo("="*100)

    summary = action_queue_service.summarize_queue(items)
    click.echo(f"Total: {summary['total']}  " + "  ".join(f"p{p}: {n}" for p, n in summary["by_priority"].items()) + "\n")


@click.group('integrity')
def integrity_group():
    """Read-only invariant diagnostics."""


@integrity_group.command('check')
@with_appcontext
def integrity_check():
    issues = integrity_service.check_integrity()
    if not issues:
        click.echo("PASS No integrity issues found.")
        return

    for issue in issues:
        click.echo(f"FAIL [{issue.check}] {issue.table} #{issue.record_id}: {issue.detail}")
    click.echo(f"\n{len(issues)} issue(s) found.")
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(principals_group)
    app.cli.add_command(automation_group)
    app.cli.add_command(queue_group)
    app.cli.add_command(integrity_group)
