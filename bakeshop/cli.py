from datetime import timedelta

import click
from flask import Flask

from .accounts import (
    create_account,
    normalize_email,
    normalize_username,
    validate_email,
    validate_password,
    validate_username,
)
from .errors import ApiError
from .orders import expire_abandoned_orders
from .roles import Role
from .store import get_db


def register_commands(app: Flask) -> None:
    @app.cli.command("create-owner")
    @click.option("--username", required=True)
    @click.option("--email", required=True)
    @click.option("--password", required=True, prompt=True, hide_input=True)
    def create_owner(username, email, password):
        """Create the owner account, or promote the account using EMAIL."""
        try:
            email = validate_email(normalize_email(email))
            existing = get_db().users.find_one({"email": email})
            if existing:
                get_db().users.update_one(
                    {"_id": existing["_id"]}, {"$set": {"role": Role.OWNER.value}}
                )
                click.echo(f"Promoted {existing.get('username')} ({existing['_id']}) to owner")
                return

            owner = create_account(
                validate_username(normalize_username(username)),
                email,
                validate_password(password),
                Role.OWNER,
            )
        except ApiError as exc:
            raise click.UsageError(exc.message)

        click.echo(f"Created owner {owner['username']} ({owner['_id']})")

    @app.cli.command("expire-pending-orders")
    @click.option("--max-age-hours", default=24, show_default=True, type=click.IntRange(min=1))
    def expire_pending_orders(max_age_hours):
        """Delete pending orders whose checkout never completed."""
        try:
            summary = expire_abandoned_orders(timedelta(hours=max_age_hours))
        except ApiError as exc:
            raise click.ClickException(exc.message)

        click.echo(
            "expired={expired} paid={paid} kept={kept} failed={failed}".format(**summary)
        )
