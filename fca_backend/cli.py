import click
import logging
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import select
from .models import db, User, Project
from .blueprints.auth import issue_token
from .services.idempotency import SyncReceiptStore
from fca_shared.enums import UserRole

logger = logging.getLogger(__name__)


@click.command('init-db')
@with_appcontext
def init_db_command():
    """Create the database tables."""
    logger.info("Starting database initialization")
    db.create_all()
    logger.info("Database tables created successfully")
    click.echo('Initialized the database.')


@click.command('create-user')
@click.option('--name', required=True, help='Display name')
@click.option('--email', required=True, help='Unique email address')
@click.option('--company', default=None, help='Tenant the user belongs to')
@click.option('--role', type=click.Choice([r.value for r in UserRole]), default=UserRole.USER.value, show_default=True)
@with_appcontext
def create_user_command(name, email, company, role):
    """Create a user account."""
    if db.session.execute(select(User).where(User.email == email)).scalars().first():
        raise click.ClickException(f"User {email} already exists")
    user = User(name=name, email=email, company=company, role=UserRole(role))
    db.session.add(user)
    db.session.commit()
    logger.info(f"Created user {user.id} ({email}, role={role})")
    click.echo(f'Created user {user.id}: {email}')


@click.command('create-project')
@click.option('--name', required=True, help='Project name')
@click.option('--company', default=None, help='Owning tenant')
@click.option('--owner-email', default=None, help='Email of the owning user')
@with_appcontext
def create_project_command(name, company, owner_email):
    """Create a project (the tenant boundary for synced records)."""
    owner = None
    if owner_email:
        owner = db.session.execute(select(User).where(User.email == owner_email)).scalars().first()
        if owner is None:
            raise click.ClickException(f"No user with email {owner_email}")
    project = Project(
        name=name,
        company=company or (owner.company if owner else None),
        owner_id=owner.id if owner else None,
    )
    db.session.add(project)
    db.session.commit()
    logger.info(f"Created project {project.id} ({name})")
    click.echo(f'Created project {project.id}: {name}')


@click.command('issue-token')
@click.argument('email')
@with_appcontext
def issue_token_command(email):
    """Issue an API bearer token for a user. The token is shown once."""
    user = db.session.execute(select(User).where(User.email == email)).scalars().first()
    if user is None:
        raise click.ClickException(f"No user with email {email}")
    token = issue_token(user)
    db.session.commit()
    logger.info(f"Issued API token for user {user.id}")
    click.echo(token)


@click.command('purge-sync-receipts')
@with_appcontext
def purge_sync_receipts_command():
    """Delete expired offline sync receipts."""
    settings = current_app.extensions['fca_settings']
    purged = SyncReceiptStore(db.session, settings.sync_receipt_ttl_hours).purge_expired()
    db.session.commit()
    click.echo(f'Purged {purged} expired sync receipts.')
