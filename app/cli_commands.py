"""
Flask CLI commands for database management.

Commands:
- flask init-db: Create the ledger tables
"""

import click
from app.database import create_schema, get_engine


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the sale, sale_item and sale_payment tables."""
        try:
            create_schema()
        except Exception as e:
            click.echo(click.style(f'Error creating tables: {e}', fg='red'))
            raise SystemExit(1)

        click.echo(click.style('Tables created successfully', fg='green', bold=True))
        click.echo(f'   Database: {get_engine().url.render_as_string(hide_password=True)}')
