"""
Command line tools for setting up a server. For dev/test purposes mostly.

.. warning: ``create-db --drop`` deletes all data.

"""

import click

from .domain import ServerRole
from .factory import create_app
from .services import users, util
from .strategies import get_auth_strategies


@click.group()
def main() -> None:
    """Manage users of a collaboration server."""


@main.command('create-db')
@click.option('--drop', is_flag=True, default=False,
              help='Drop all tables first.')
def create_db(drop: bool) -> None:
    """Create the database tables."""
    app = create_app()
    with app.app_context():
        if drop:
            util.drop_all()
        util.create_all()
    click.echo('Created tables')


@main.command('create-user')
@click.option('--email', prompt='E-mail address')
@click.option('--name', prompt='Name')
@click.option('--password', prompt='Password', hide_input=True,
              confirmation_prompt=True)
@click.option('--role', type=click.Choice(ServerRole.ALL), default=None)
@click.option('--verified/--unverified', default=True)
def create_user(email: str, name: str, password: str, role: str,
                verified: bool) -> None:
    """Create a new user."""
    app = create_app()
    with app.app_context():
        util.create_all()
        user_id = users.create_user(email=email, name=name,
                                    password=password, role=role,
                                    verified=verified)
        click.echo(f'Created user {user_id} with role'
                   f' {users.get_user_role(user_id)}')


@main.command('change-role')
@click.argument('email')
@click.argument('role', type=click.Choice(ServerRole.ALL))
def change_role(email: str, role: str) -> None:
    """Change the server role of the user with address EMAIL."""
    app = create_app()
    with app.app_context():
        user = users.get_user_by_email(email)
        if user is None:
            raise click.ClickException(f'No user with address {email}')
        users.change_user_role(user.user_id, role)
        click.echo(f'{user.user_id} is now {role}')


@main.command('strategies')
def strategies() -> None:
    """List the enabled authentication strategies."""
    app = create_app()
    with app.app_context():
        for meta in get_auth_strategies():
            click.echo(f'{meta.strategy_id}\t{meta.name}\t'
                       f'{",".join(meta.capabilities)}')


if __name__ == '__main__':
    main()
