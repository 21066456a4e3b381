import logging

from .errors import DuplicateAccountError, ValidationError
from .session import SessionContext

logger = logging.getLogger(__name__)


def _required(**fields):
    cleaned = {}
    for name, value in fields.items():
        value = "" if value is None else str(value).strip()
        if not value:
            raise ValidationError(f"{name.replace('_', ' ').capitalize()} is required")
        cleaned[name] = value
    return cleaned


async def register(client, business_name, email, mobile, password) -> SessionContext:
    """Creates a merchant account and logs it straight in."""
    fields = _required(business_name=business_name, email=email, mobile=mobile)
    if not password:
        raise ValidationError("Password is required")

    existing = await client.lookup_account(email=fields["email"], mobile=fields["mobile"])
    if existing:
        raise DuplicateAccountError("User already exists")

    account = await client.create_account(password=password, **fields)
    logger.info("Account created for %s", account.email)
    return await SessionContext(client, account).open()


async def login(client, credential, password) -> SessionContext:
    """`credential` is the account's email or its mobile number."""
    credential = _required(credential=credential)["credential"]
    if not password:
        raise ValidationError("Password is required")

    account = await client.authenticate(credential, password)
    return await SessionContext(client, account).open()


async def change_password(session: SessionContext, old_password, new_password) -> None:
    session.ensure_active()
    if not new_password:
        raise ValidationError("New password is required")
    await session.client.update_password(session.owner, old_password, new_password)
    logger.info("Password changed for %s", session.owner)


def logout(session: SessionContext) -> None:
    session.close()
    logger.info("Logged out %s", session.owner)
