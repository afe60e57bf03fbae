"""Script Governance CLI tool (scriptgov)."""

from datetime import timedelta

import typer

from scriptgov.core.permissions import UserRole

app = typer.Typer(name="scriptgov", help="Script Governance CLI")
db_app = typer.Typer(help="Database management commands")
roles_app = typer.Typer(help="Role assignment commands (operator access, no permission checks)")
app.add_typer(db_app, name="db")
app.add_typer(roles_app, name="roles")


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    import pymysql
    from sqlalchemy.engine import make_url
    from scriptgov.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"Nothing to create for {url.drivername}; run 'db init'.")
        raise typer.Exit()

    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    try:
        cursor = conn.cursor()
        cursor.execute(
            f"CREATE DATABASE IF NOT EXISTS `{url.database}` "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
        typer.echo(f"Database '{url.database}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables and seed the bootstrap admin."""
    import scriptgov.models  # noqa: F401
    from scriptgov.db.base import Base
    from scriptgov.db.session import SessionLocal, engine
    from scriptgov.db.seeds.seed_admin import seed_admin

    Base.metadata.create_all(bind=engine)
    typer.echo("Tables created")

    db = SessionLocal()
    try:
        seed_admin(db)
    finally:
        db.close()


@roles_app.command("assign")
def roles_assign(
    user_id: str = typer.Argument(..., help="External user id"),
    email: str = typer.Argument(..., help="User email"),
    role: UserRole = typer.Option(UserRole.viewer, help="Role to grant"),
):
    """Grant a role directly in the store."""
    from scriptgov.db.session import SessionLocal
    from scriptgov.services.audit_service import audit_service
    from scriptgov.services.role_service import SYSTEM_ACTOR, role_service

    db = SessionLocal()
    try:
        assignment = role_service.upsert(db, user_id, email, role, SYSTEM_ACTOR)
        audit_service.log(
            db,
            actor_id=SYSTEM_ACTOR,
            actor_email=None,
            action="role.assigned",
            resource_type="user_role",
            resource_id=user_id,
            new_value={"role": role.value, "email": email},
        )
        typer.echo(f"{assignment.email} ({assignment.user_id}) is now {assignment.role.value}")
    finally:
        db.close()


@roles_app.command("list")
def roles_list():
    """List active role assignments."""
    from scriptgov.db.session import SessionLocal
    from scriptgov.services.role_service import role_service

    db = SessionLocal()
    try:
        for a in role_service.list_active(db):
            typer.echo(f"  {a.user_id:<36} {a.email:<40} {a.role.value}")
    finally:
        db.close()


@roles_app.command("remove")
def roles_remove(user_id: str = typer.Argument(..., help="External user id")):
    """Deactivate a user's role assignment."""
    from scriptgov.db.session import SessionLocal
    from scriptgov.services.audit_service import audit_service
    from scriptgov.services.role_service import SYSTEM_ACTOR, role_service

    db = SessionLocal()
    try:
        if not role_service.deactivate(db, user_id):
            typer.echo(f"No active role for {user_id}")
            raise typer.Exit(code=1)
        audit_service.log(
            db,
            actor_id=SYSTEM_ACTOR,
            actor_email=None,
            action="role.removed",
            resource_type="user_role",
            resource_id=user_id,
        )
        typer.echo(f"Role of {user_id} removed")
    finally:
        db.close()


@app.command("token")
def token(
    user_id: str = typer.Argument(..., help="Subject (user id)"),
    email: str = typer.Argument(..., help="Email claim"),
    minutes: int = typer.Option(60, help="Lifetime in minutes"),
):
    """Mint a development bearer token."""
    from scriptgov.core.security import create_access_token

    typer.echo(create_access_token(
        {"sub": user_id, "email": email}, expires_delta=timedelta(minutes=minutes),
    ))


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(True, help="Auto-reload"),
):
    """Start the FastAPI development server."""
    import uvicorn
    uvicorn.run("scriptgov.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
