# votee9ja/create_user.py

# `flask create-user`: bootstrap admin and super-admin accounts, which the
# public registration endpoint can never create.

import click
from flask.cli import with_appcontext

from votee9ja import db
from votee9ja.authentication.accounts import AccountService
from votee9ja.encryption.password_hashing import PasswordHashingService
from votee9ja.errors import ValidationError


@click.command('create-user')
@click.option('--email', required=True)
@click.option('--role', type=click.Choice(['admin', 'super_admin', 'voter']), default='admin', show_default=True)
@click.option('--first-name', required=True)
@click.option('--last-name', required=True)
@click.option('--phone', 'phone_number', required=True)
@click.option('--date-of-birth', required=True, help='YYYY-MM-DD')
@click.option('--gender', type=click.Choice(['male', 'female', 'other']), required=True)
@click.option('--address', required=True)
@click.option('--password', default=None, help='Generated when omitted.')
@with_appcontext
def create_user_command(email, role, first_name, last_name, phone_number, date_of_birth, gender, address, password):
    generated = password is None
    if generated:
        password = PasswordHashingService().generate_secure_password()

    data = {
        'email': email,
        'password': password,
        'first_name': first_name,
        'last_name': last_name,
        'phone_number': phone_number,
        'date_of_birth': date_of_birth,
        'gender': gender,
        'address': address,
    }
    try:
        profile = AccountService(db.session).create_privileged(data, role)
    except ValidationError as e:
        for field, message in sorted(e.errors.items()):
            click.echo(f"{field}: {message}", err=True)
        raise click.ClickException(e.message)

    click.echo(f"User email: {email}")
    click.echo(f"Role: {profile.role}")
    if generated:
        click.echo(f"Generated password: {password}")
    click.echo("User created successfully.")
