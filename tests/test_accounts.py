import pytest

from mailbox_verifier.accounts import AccountNotFoundError, AccountStore
from mailbox_verifier.models import AccountStatus


ACCOUNT = {
    "name": "Support",
    "email": "support@example.com",
    "password": "secret",
    "smtp_host": "smtp.example.com",
    "smtp_port": 465,
    "smtp_secure": True,
    "imap_host": "imap.example.com",
    "imap_port": 143,
    "imap_secure": False,
}


@pytest.mark.asyncio
async def test_add_and_get_account(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()

    account_id = await store.add_account(ACCOUNT)
    account = await store.get_account(account_id)

    assert account["id"] == account_id
    assert account["email"] == "support@example.com"
    assert account["password"] == "secret"
    assert account["smtp_secure"] is True
    assert account["imap_secure"] is False
    assert account["status"] == AccountStatus.PENDING.value


@pytest.mark.asyncio
async def test_name_defaults_to_email(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()
    account_id = await store.add_account({k: v for k, v in ACCOUNT.items() if k != "name"})
    assert (await store.get_account(account_id))["name"] == "support@example.com"


@pytest.mark.asyncio
async def test_missing_account_raises(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()
    with pytest.raises(AccountNotFoundError) as excinfo:
        await store.get_account(404)
    assert excinfo.value.account_id == 404
    assert excinfo.value.code == "account_not_found"


@pytest.mark.asyncio
async def test_list_accounts_omits_password(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()
    await store.add_account(ACCOUNT)
    await store.add_account({**ACCOUNT, "email": "sales@example.com", "name": "Sales"})

    accounts = await store.list_accounts()

    assert [a["email"] for a in accounts] == ["support@example.com", "sales@example.com"]
    assert all("password" not in a for a in accounts)


@pytest.mark.asyncio
async def test_set_status(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()
    account_id = await store.add_account(ACCOUNT)

    assert await store.set_status(account_id, AccountStatus.ACTIVE) is True
    assert (await store.get_account(account_id))["status"] == "active"
    assert await store.set_status(999, "active") is False
    with pytest.raises(ValueError):
        await store.set_status(account_id, "bogus")


@pytest.mark.asyncio
async def test_delete_account(tmp_path):
    store = AccountStore(str(tmp_path / "accounts.db"))
    await store.init_db()
    account_id = await store.add_account(ACCOUNT)

    assert await store.delete_account(account_id) is True
    assert await store.delete_account(account_id) is False
    assert await store.list_accounts() == []
